"""Pillow implementations of the filter catalogue.

Every filter takes an RGBA working raster plus its typed arguments and returns a new
image; the input is never mutated. Colour operations run on the RGB bands and carry
the alpha band through unchanged.
"""
from __future__ import annotations

import colorsys
import math
from typing import Callable, Dict, List, Sequence

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from asset_engines.common.errors import InvalidFilterArgument
from asset_engines.image_filters.models import (
    Anchor,
    ArgValue,
    FilterInvocation,
    FilterKind,
    Interpolation,
    Resample,
    RotateEdge,
)
from asset_engines.image_filters.parser import check_output_size

FilterFn = Callable[..., Image.Image]

RESAMPLE_FILTERS = {
    Resample.NEAREST_NEIGHBOR: Image.Resampling.NEAREST,
    Resample.BOX: Image.Resampling.BOX,
    Resample.LINEAR: Image.Resampling.BILINEAR,
    Resample.CUBIC: Image.Resampling.BICUBIC,
    Resample.LANCZOS: Image.Resampling.LANCZOS,
}

ROTATE_RESAMPLE = {
    Interpolation.NEAREST_NEIGHBOR: Image.Resampling.NEAREST,
    Interpolation.LINEAR: Image.Resampling.BILINEAR,
    Interpolation.CUBIC: Image.Resampling.BICUBIC,
}

ROTATE_FILL = {
    RotateEdge.EXPAND: (0, 0, 0, 0),
    RotateEdge.TRANSPARENT: (0, 0, 0, 0),
    RotateEdge.BLACK: (0, 0, 0, 255),
    RotateEdge.WHITE: (255, 255, 255, 255),
}

SEPIA_MATRIX = np.array([
    [0.393, 0.769, 0.189],
    [0.349, 0.686, 0.168],
    [0.272, 0.534, 0.131],
], dtype=np.float32)


def _clamp_byte(value: float) -> int:
    return int(round(max(0.0, min(255.0, value))))


def _unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def _on_rgb(img: Image.Image, op: Callable[[Image.Image], Image.Image]) -> Image.Image:
    alpha = img.getchannel("A")
    out = op(img.convert("RGB")).convert("RGB")
    out.putalpha(alpha)
    return out


def _blend_rgb(img: Image.Image, op: Callable[[Image.Image], Image.Image], amount: float) -> Image.Image:
    amount = _unit(amount)
    if amount == 0.0:
        return img.copy()

    def blended(rgb: Image.Image) -> Image.Image:
        target = op(rgb).convert("RGB")
        return target if amount == 1.0 else Image.blend(rgb, target, amount)

    return _on_rgb(img, blended)


def _lut(fn: Callable[[int], float]) -> List[int]:
    return [_clamp_byte(fn(i)) for i in range(256)]


def _rank_size(radius: float) -> int:
    return 2 * int(math.ceil(radius)) + 1


# Blur and morphology

def box_blur(img: Image.Image, radius: float) -> Image.Image:
    if radius == 0:
        return img.copy()
    return img.filter(ImageFilter.BoxBlur(radius))


def gaussian_blur(img: Image.Image, radius: float) -> Image.Image:
    if radius == 0:
        return img.copy()
    return img.filter(ImageFilter.GaussianBlur(radius=radius))


def dilate(img: Image.Image, radius: float) -> Image.Image:
    if radius == 0:
        return img.copy()
    return img.filter(ImageFilter.MaxFilter(_rank_size(radius)))


def erode(img: Image.Image, radius: float) -> Image.Image:
    if radius == 0:
        return img.copy()
    return img.filter(ImageFilter.MinFilter(_rank_size(radius)))


def median(img: Image.Image, radius: float) -> Image.Image:
    if radius == 0:
        return img.copy()
    return img.filter(ImageFilter.MedianFilter(_rank_size(radius)))


# Convolution

def edge_detection(img: Image.Image, strength: float = 1.0) -> Image.Image:
    return _blend_rgb(img, lambda rgb: rgb.filter(ImageFilter.FIND_EDGES), strength)


def sobel(img: Image.Image, enabled: bool) -> Image.Image:
    if not enabled:
        return img.copy()

    def gradient(rgb: Image.Image) -> Image.Image:
        gray = np.asarray(rgb.convert("L"), dtype=np.float32)
        padded = np.pad(gray, 1, mode="edge")
        gx = (
            (padded[:-2, 2:] + 2 * padded[1:-1, 2:] + padded[2:, 2:])
            - (padded[:-2, :-2] + 2 * padded[1:-1, :-2] + padded[2:, :-2])
        )
        gy = (
            (padded[2:, :-2] + 2 * padded[2:, 1:-1] + padded[2:, 2:])
            - (padded[:-2, :-2] + 2 * padded[:-2, 1:-1] + padded[:-2, 2:])
        )
        magnitude = np.clip(np.hypot(gx, gy), 0, 255).astype(np.uint8)
        return Image.fromarray(magnitude)

    return _on_rgb(img, gradient)


def emboss(img: Image.Image, strength: float) -> Image.Image:
    return _blend_rgb(img, lambda rgb: rgb.filter(ImageFilter.EMBOSS), strength)


def sharpen(img: Image.Image, strength: float) -> Image.Image:
    if strength <= 0:
        return img.copy()
    percent = min(300, int(150 * strength))
    return _on_rgb(img, lambda rgb: rgb.filter(ImageFilter.UnsharpMask(radius=1, percent=percent, threshold=3)))


# Tone

def brightness(img: Image.Image, value: float) -> Image.Image:
    return _on_rgb(img, lambda rgb: ImageEnhance.Brightness(rgb).enhance(max(0.0, 1.0 + value)))


def contrast(img: Image.Image, value: float) -> Image.Image:
    return _on_rgb(img, lambda rgb: ImageEnhance.Contrast(rgb).enhance(max(0.0, 1.0 + value)))


def saturation(img: Image.Image, value: float) -> Image.Image:
    return _on_rgb(img, lambda rgb: ImageEnhance.Color(rgb).enhance(max(0.0, 1.0 + value)))


def gamma(img: Image.Image, value: float) -> Image.Image:
    table = _lut(lambda i: 255.0 * (i / 255.0) ** (1.0 / value))
    return _on_rgb(img, lambda rgb: rgb.point(table * 3))


def hue(img: Image.Image, turns: float) -> Image.Image:
    shift = int(round((turns % 1.0) * 256)) % 256
    if shift == 0:
        return img.copy()

    def rotate_hue(rgb: Image.Image) -> Image.Image:
        h, s, v = rgb.convert("HSV").split()
        h = h.point(lambda p: (p + shift) % 256)
        return Image.merge("HSV", (h, s, v)).convert("RGB")

    return _on_rgb(img, rotate_hue)


def sepia(img: Image.Image, amount: float) -> Image.Image:
    def tone(rgb: Image.Image) -> Image.Image:
        arr = np.asarray(rgb, dtype=np.float32) @ SEPIA_MATRIX.T
        return Image.fromarray(np.clip(arr, 0, 255).astype(np.uint8))

    return _blend_rgb(img, tone, amount)


def threshold(img: Image.Image, level: float) -> Image.Image:
    cut = level * 255.0
    return _on_rgb(img, lambda rgb: rgb.convert("L").point(lambda p: 255 if p >= cut else 0))


def color_balance(img: Image.Image, red: float, green: float, blue: float) -> Image.Image:
    table: List[int] = []
    for factor in (red, green, blue):
        scale = max(0.0, 1.0 + factor)
        table.extend(_lut(lambda i, scale=scale: i * scale))
    return _on_rgb(img, lambda rgb: rgb.point(table))


def colorize(img: Image.Image, hue_turns: float, sat: float, amount: float) -> Image.Image:
    r, g, b = colorsys.hls_to_rgb(hue_turns % 1.0, 0.5, _unit(sat))
    mid = (_clamp_byte(r * 255), _clamp_byte(g * 255), _clamp_byte(b * 255))
    return _blend_rgb(
        img,
        lambda rgb: ImageOps.colorize(rgb.convert("L"), black=(0, 0, 0), white=(255, 255, 255), mid=mid),
        amount,
    )


def _linear_to_srgb(i: int) -> float:
    c = i / 255.0
    out = 12.92 * c if c <= 0.0031308 else 1.055 * c ** (1 / 2.4) - 0.055
    return out * 255.0


def _srgb_to_linear(i: int) -> float:
    c = i / 255.0
    out = c / 12.92 if c <= 0.04045 else ((c + 0.055) / 1.055) ** 2.4
    return out * 255.0


def linear_to_srgb(img: Image.Image, factor: float) -> Image.Image:
    table = _lut(_linear_to_srgb)
    return _blend_rgb(img, lambda rgb: rgb.point(table * 3), factor)


def srgb_to_linear(img: Image.Image, factor: float) -> Image.Image:
    table = _lut(_srgb_to_linear)
    return _blend_rgb(img, lambda rgb: rgb.point(table * 3), factor)


# Geometry

def crop(img: Image.Image, x: int, y: int, width: int, height: int) -> Image.Image:
    right = min(img.width, x + width)
    bottom = min(img.height, y + height)
    if x >= right or y >= bottom:
        raise InvalidFilterArgument(
            FilterKind.CROP.value,
            f"{x},{y},{width},{height}",
            f"rectangle lies outside the {img.width}x{img.height} image",
        )
    return img.crop((x, y, right, bottom))


def crop_to_size(img: Image.Image, width: int, height: int, anchor: Anchor) -> Image.Image:
    """Exactly width x height; uncovered area (when the source is smaller) stays transparent."""
    fx, fy = anchor.fractions
    left = int(math.floor((img.width - width) * fx))
    top = int(math.floor((img.height - height) * fy))
    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    canvas.paste(img, (-left, -top))
    return canvas


def _transposer(method: Image.Transpose) -> FilterFn:
    def apply(img: Image.Image, enabled: bool) -> Image.Image:
        return img.transpose(method) if enabled else img.copy()

    apply.__name__ = f"transpose_{method.name.lower()}"
    return apply


def invert(img: Image.Image, enabled: bool) -> Image.Image:
    if not enabled:
        return img.copy()
    return _on_rgb(img, ImageOps.invert)


def grayscale(img: Image.Image, enabled: bool) -> Image.Image:
    if not enabled:
        return img.copy()
    return _on_rgb(img, ImageOps.grayscale)


def resize(img: Image.Image, width: int, height: int, resample: Resample) -> Image.Image:
    if width == 0:
        width = max(1, int(round(img.width * height / img.height)))
    if height == 0:
        height = max(1, int(round(img.height * width / img.width)))
    check_output_size(FilterKind.RESIZE.value, f"{width},{height}", width, height)
    return img.resize((width, height), RESAMPLE_FILTERS[resample])


def rotate(img: Image.Image, angle: float, edge: RotateEdge, interpolation: Interpolation) -> Image.Image:
    """Counter-clockwise rotation in degrees."""
    return img.rotate(
        angle,
        resample=ROTATE_RESAMPLE[interpolation],
        expand=edge is RotateEdge.EXPAND,
        fillcolor=ROTATE_FILL[edge],
    )


FILTER_FUNCTIONS: Dict[FilterKind, FilterFn] = {
    FilterKind.BOX_BLUR: box_blur,
    FilterKind.GAUSSIAN_BLUR: gaussian_blur,
    FilterKind.DILATE: dilate,
    FilterKind.ERODE: erode,
    FilterKind.EDGE_DETECTION: edge_detection,
    FilterKind.SOBEL: sobel,
    FilterKind.EMBOSS: emboss,
    FilterKind.MEDIAN: median,
    FilterKind.SHARPEN: sharpen,
    FilterKind.BRIGHTNESS: brightness,
    FilterKind.CONTRAST: contrast,
    FilterKind.GAMMA: gamma,
    FilterKind.HUE: hue,
    FilterKind.SATURATION: saturation,
    FilterKind.SEPIA: sepia,
    FilterKind.THRESHOLD: threshold,
    FilterKind.COLOR_BALANCE: color_balance,
    FilterKind.COLORIZE: colorize,
    FilterKind.LINEAR_TO_SRGB: linear_to_srgb,
    FilterKind.SRGB_TO_LINEAR: srgb_to_linear,
    FilterKind.CROP: crop,
    FilterKind.CROP_TO_SIZE: crop_to_size,
    FilterKind.FLIP_HORIZONTAL: _transposer(Image.Transpose.FLIP_LEFT_RIGHT),
    FilterKind.FLIP_VERTICAL: _transposer(Image.Transpose.FLIP_TOP_BOTTOM),
    FilterKind.INVERT: invert,
    FilterKind.GRAYSCALE: grayscale,
    FilterKind.ROTATE_180: _transposer(Image.Transpose.ROTATE_180),
    FilterKind.ROTATE_270: _transposer(Image.Transpose.ROTATE_270),
    FilterKind.ROTATE_90: _transposer(Image.Transpose.ROTATE_90),
    FilterKind.TRANSPOSE: _transposer(Image.Transpose.TRANSPOSE),
    FilterKind.TRANSVERSE: _transposer(Image.Transpose.TRANSVERSE),
    FilterKind.RESIZE: resize,
    FilterKind.ROTATE: rotate,
}


def apply_filter(img: Image.Image, invocation: FilterInvocation) -> Image.Image:
    fn = FILTER_FUNCTIONS[invocation.kind]
    arguments: Sequence[ArgValue] = invocation.arguments
    return fn(img, *arguments)
