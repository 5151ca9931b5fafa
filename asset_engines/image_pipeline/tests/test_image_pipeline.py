from __future__ import annotations

import io
import threading

import numpy as np
import pytest
from PIL import Image

from asset_engines.common.errors import PipelineCancelled, UnsupportedFormatError
from asset_engines.image_filters.parser import parse_filter_chain
from asset_engines.image_pipeline.service import ImagePipeline, sniff_format


def _gradient(width: int = 32, height: int = 24) -> Image.Image:
    arr = np.zeros((height, width, 4), dtype=np.uint8)
    arr[..., 0] = (np.arange(width) * (255 // width))[None, :]
    arr[..., 1] = (np.arange(height) * (255 // height))[:, None]
    arr[..., 2] = 128
    arr[..., 3] = 255
    return Image.fromarray(arr)


def _encoded(fmt: str) -> bytes:
    img = _gradient()
    if fmt == "JPEG":
        img = img.convert("RGB")
    elif fmt == "GIF":
        img = img.convert("RGB").convert("P")
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


@pytest.fixture
def pipeline():
    return ImagePipeline(jpeg_quality=90, png_compress_level=6)


@pytest.mark.parametrize("fmt", ["PNG", "JPEG", "GIF", "TIFF"])
def test_empty_chain_returns_original_bytes(pipeline, fmt):
    data = _encoded(fmt)
    result = pipeline.process(data, [])
    assert result.data is data
    assert result.transformed is False
    assert result.format == fmt


@pytest.mark.parametrize("fmt, mime", [("PNG", "image/png"), ("JPEG", "image/jpeg"), ("GIF", "image/gif"), ("TIFF", "image/tiff")])
def test_sniff_format(fmt, mime, pipeline):
    data = _encoded(fmt)
    assert sniff_format(data) == fmt
    assert pipeline.process(data, []).mime_type == mime


def test_unknown_magic_is_unsupported(pipeline):
    with pytest.raises(UnsupportedFormatError) as exc_info:
        pipeline.process(b"%PDF-1.7 not an image", parse_filter_chain("grayscale=true"))
    assert exc_info.value.http_status == 415


def test_corrupt_image_is_unsupported(pipeline):
    corrupt = b"\x89PNG\r\n\x1a\n" + b"\x00garbage" * 4
    with pytest.raises(UnsupportedFormatError):
        pipeline.decode(corrupt)


def test_decode_produces_rgba(pipeline):
    for fmt in ("PNG", "JPEG", "GIF", "TIFF"):
        assert pipeline.decode(_encoded(fmt)).mode == "RGBA"


def test_apply_is_deterministic(pipeline):
    raster = _gradient()
    chain = parse_filter_chain("gaussianblur=1.5&hue=0.25&sharpen=0.8&rotate=12,Black,CubicInterpolation")
    first = pipeline.apply(raster, chain)
    second = pipeline.apply(raster, chain)
    assert first.tobytes() == second.tobytes()


def test_filter_order_matters(pipeline):
    raster = _gradient()
    crop_then_resize = pipeline.apply(raster, parse_filter_chain("crop=0,0,16,12&resize=8,8,Box"))
    resize_then_crop = pipeline.apply(raster, parse_filter_chain("resize=8,8,Box&crop=0,0,16,12"))
    assert crop_then_resize.size == resize_then_crop.size == (8, 8)
    assert crop_then_resize.tobytes() != resize_then_crop.tobytes()


def test_crop_to_size_yields_exact_dimensions(pipeline):
    result = pipeline.process(_encoded("PNG"), parse_filter_chain("cropToSize=10,20,CenterAnchor"))
    assert result.transformed is True
    assert Image.open(io.BytesIO(result.data)).size == (10, 20)


def test_format_change_without_filters_reencodes(pipeline):
    result = pipeline.process(_encoded("PNG"), [], output_format="JPEG", quality=60)
    assert result.transformed is True
    assert result.mime_type == "image/jpeg"
    with Image.open(io.BytesIO(result.data)) as img:
        assert img.format == "JPEG"
        assert img.mode == "RGB"


def test_transformed_output_keeps_source_format(pipeline):
    for fmt in ("PNG", "JPEG", "GIF", "TIFF"):
        result = pipeline.process(_encoded(fmt), parse_filter_chain("flipVertical=true"))
        with Image.open(io.BytesIO(result.data)) as img:
            assert img.format == fmt


def test_cancelled_event_stops_before_next_filter(pipeline):
    cancel_event = threading.Event()
    cancel_event.set()
    with pytest.raises(PipelineCancelled) as exc_info:
        pipeline.apply(_gradient(), parse_filter_chain("invert=true"), cancel_event)
    assert exc_info.value.details["step"] == 0


def test_jpeg_quality_affects_size(pipeline):
    data = _encoded("PNG")
    low = pipeline.process(data, [], output_format="JPEG", quality=5).data
    high = pipeline.process(data, [], output_format="JPEG", quality=95).data
    assert len(low) < len(high)


def test_defaults_come_from_configuration(monkeypatch):
    monkeypatch.setenv("ASSET_JPEG_QUALITY", "55")
    monkeypatch.setenv("ASSET_PNG_COMPRESS_LEVEL", "1")
    pipeline = ImagePipeline()
    assert pipeline.jpeg_quality == 55
    assert pipeline.png_compress_level == 1


def test_decompression_bomb_is_unsupported(pipeline, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    with pytest.raises(UnsupportedFormatError) as exc_info:
        pipeline.decode(_encoded("PNG"))
    assert exc_info.value.details["reason"] == "too_large"
