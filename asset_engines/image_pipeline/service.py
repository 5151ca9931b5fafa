from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from PIL import Image, UnidentifiedImageError

from asset_engines.common.errors import PipelineCancelled, UnsupportedFormatError
from asset_engines.config import runtime_config
from asset_engines.image_filters.models import FilterInvocation
from asset_engines.image_pipeline.backend import apply_filter

logger = logging.getLogger(__name__)

# Format -> (magic prefixes, mime type)
SUPPORTED_FORMATS: Dict[str, tuple] = {
    "PNG": ((b"\x89PNG\r\n\x1a\n",), "image/png"),
    "JPEG": ((b"\xff\xd8\xff",), "image/jpeg"),
    "GIF": ((b"GIF87a", b"GIF89a"), "image/gif"),
    "TIFF": ((b"II*\x00", b"MM\x00*"), "image/tiff"),
}


def mime_type_for(fmt: str) -> str:
    return SUPPORTED_FORMATS[fmt][1]


def sniff_format(data: bytes) -> str:
    for fmt, (magics, _) in SUPPORTED_FORMATS.items():
        if any(data.startswith(magic) for magic in magics):
            return fmt
    raise UnsupportedFormatError(
        "asset is not a PNG, JPEG, GIF or TIFF image",
        details={"prefix": data[:8].hex()},
    )


@dataclass
class PipelineResult:
    data: bytes
    format: str
    mime_type: str
    transformed: bool


class ImagePipeline:
    """Decode -> ordered filter fold -> encode."""

    def __init__(self, jpeg_quality: Optional[int] = None, png_compress_level: Optional[int] = None) -> None:
        self.jpeg_quality = jpeg_quality if jpeg_quality is not None else runtime_config.get_jpeg_quality()
        self.png_compress_level = (
            png_compress_level if png_compress_level is not None else runtime_config.get_png_compress_level()
        )

    def decode(self, data: bytes) -> Image.Image:
        fmt = sniff_format(data)
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                return img.convert("RGBA")
        except Image.DecompressionBombError as exc:
            raise UnsupportedFormatError(
                f"{fmt} image exceeds the decoder pixel limit", details={"format": fmt, "reason": "too_large"}
            ) from exc
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise UnsupportedFormatError(f"could not decode {fmt} image: {exc}", details={"format": fmt}) from exc

    def apply(
        self,
        raster: Image.Image,
        chain: Sequence[FilterInvocation],
        cancel_event: Optional[threading.Event] = None,
    ) -> Image.Image:
        result = raster
        for step, invocation in enumerate(chain):
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled(
                    "transformation cancelled",
                    details={"step": step, "filter": invocation.kind.value},
                )
            result = apply_filter(result, invocation)
        return result

    def encode(self, raster: Image.Image, fmt: str, quality: Optional[int] = None) -> bytes:
        if fmt not in SUPPORTED_FORMATS:
            raise UnsupportedFormatError(f"cannot encode to {fmt}", details={"format": fmt})
        out = io.BytesIO()
        if fmt == "JPEG":
            raster.convert("RGB").save(out, format="JPEG", quality=quality or self.jpeg_quality)
        elif fmt == "PNG":
            raster.save(out, format="PNG", compress_level=self.png_compress_level)
        else:
            raster.save(out, format=fmt)
        return out.getvalue()

    def process(
        self,
        data: bytes,
        chain: Sequence[FilterInvocation],
        output_format: Optional[str] = None,
        quality: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PipelineResult:
        source_format = sniff_format(data)
        target_format = output_format or source_format
        if not chain and target_format == source_format:
            return PipelineResult(data, source_format, mime_type_for(source_format), transformed=False)
        raster = self.decode(data)
        raster = self.apply(raster, chain, cancel_event)
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled("transformation cancelled before encoding")
        encoded = self.encode(raster, target_format, quality)
        logger.debug(
            "Pipeline %s -> %s applied %d filter(s), %d -> %d bytes",
            source_format, target_format, len(chain), len(data), len(encoded),
        )
        return PipelineResult(encoded, target_format, mime_type_for(target_format), transformed=True)
