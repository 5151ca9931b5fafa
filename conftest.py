import sys
from pathlib import Path
import os

# Ensure repo root on sys.path for imports from anywhere in tests tree.
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ENV", "test")
os.environ.setdefault("ASSET_JPEG_QUALITY", "90")
os.environ.setdefault("ASSET_PNG_COMPRESS_LEVEL", "6")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("GCP_PROJECT", "test-project")
