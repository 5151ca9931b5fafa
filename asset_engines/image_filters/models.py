"""Filter catalogue: the closed set of image operations and their argument grammar."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Union


class FilterKind(str, Enum):
    """Available image filters. Values are the canonical query-string keys."""
    BOX_BLUR = "boxblur"
    GAUSSIAN_BLUR = "gaussianblur"
    DILATE = "dilate"
    ERODE = "erode"
    EDGE_DETECTION = "edgedetection"
    SOBEL = "sobel"
    EMBOSS = "emboss"
    MEDIAN = "median"
    SHARPEN = "sharpen"
    BRIGHTNESS = "brightness"
    CONTRAST = "contrast"
    GAMMA = "gamma"
    HUE = "hue"
    SATURATION = "saturation"
    SEPIA = "sepia"
    THRESHOLD = "threshold"
    COLOR_BALANCE = "colorBalance"
    COLORIZE = "colorize"
    LINEAR_TO_SRGB = "colorspaceLinearToSRGB"
    SRGB_TO_LINEAR = "colorspaceSRGBToLinear"
    CROP = "crop"
    CROP_TO_SIZE = "cropToSize"
    FLIP_HORIZONTAL = "flipHorizontal"
    FLIP_VERTICAL = "flipVertical"
    INVERT = "invert"
    GRAYSCALE = "grayscale"
    ROTATE_180 = "rotate180"
    ROTATE_270 = "rotate270"
    ROTATE_90 = "rotate90"
    TRANSPOSE = "transpose"
    TRANSVERSE = "transverse"
    RESIZE = "resize"
    ROTATE = "rotate"


class Anchor(str, Enum):
    """Reference point for size-constrained crops."""
    CENTER = "CenterAnchor"
    TOP_LEFT = "TopLeftAnchor"
    TOP = "TopAnchor"
    TOP_RIGHT = "TopRightAnchor"
    LEFT = "LeftAnchor"
    RIGHT = "RightAnchor"
    BOTTOM_LEFT = "BottomLeftAnchor"
    BOTTOM = "BottomAnchor"
    BOTTOM_RIGHT = "BottomRightAnchor"

    @property
    def fractions(self) -> Tuple[float, float]:
        return ANCHOR_FRACTIONS[self]


ANCHOR_FRACTIONS: Dict[Anchor, Tuple[float, float]] = {
    Anchor.TOP_LEFT: (0.0, 0.0),
    Anchor.TOP: (0.5, 0.0),
    Anchor.TOP_RIGHT: (1.0, 0.0),
    Anchor.LEFT: (0.0, 0.5),
    Anchor.CENTER: (0.5, 0.5),
    Anchor.RIGHT: (1.0, 0.5),
    Anchor.BOTTOM_LEFT: (0.0, 1.0),
    Anchor.BOTTOM: (0.5, 1.0),
    Anchor.BOTTOM_RIGHT: (1.0, 1.0),
}


class Resample(str, Enum):
    """Resampling kernels for resize."""
    NEAREST_NEIGHBOR = "NearestNeighbor"
    BOX = "Box"
    LINEAR = "Linear"
    CUBIC = "Cubic"
    LANCZOS = "Lanczos"


class RotateEdge(str, Enum):
    """How rotate treats the area outside the source image."""
    EXPAND = "EWD"
    TRANSPARENT = "Transparent"
    BLACK = "Black"
    WHITE = "White"


class Interpolation(str, Enum):
    """Pixel interpolation for arbitrary-angle rotation."""
    NEAREST_NEIGHBOR = "NearestNeighborInterpolation"
    LINEAR = "LinearInterpolation"
    CUBIC = "CubicInterpolation"


class ArgType(str, Enum):
    FLOAT = "float"
    RADIUS = "radius"  # float >= 0
    POSITIVE = "positive"  # float > 0
    INT = "int"  # int >= 0
    SIZE = "size"  # int >= 1
    BOOL = "bool"
    ANCHOR = "anchor"
    RESAMPLE = "resample"
    EDGE = "edge"
    INTERPOLATION = "interpolation"


ENUM_ARG_TYPES = {
    ArgType.ANCHOR: Anchor,
    ArgType.RESAMPLE: Resample,
    ArgType.EDGE: RotateEdge,
    ArgType.INTERPOLATION: Interpolation,
}

# Short anchor spellings accepted alongside the *Anchor tokens.
ANCHOR_ALIASES: Dict[str, Anchor] = {
    anchor.value[: -len("Anchor")]: anchor for anchor in Anchor
}

ArgValue = Union[float, int, bool, Anchor, Resample, RotateEdge, Interpolation]


@dataclass(frozen=True)
class FilterSignature:
    args: Tuple[ArgType, ...]
    defaults: Tuple[ArgValue, ...] = ()

    @property
    def min_arity(self) -> int:
        return len(self.args) - len(self.defaults)


_F = ArgType.FLOAT
_B = (ArgType.BOOL,)

FILTER_SIGNATURES: Dict[FilterKind, FilterSignature] = {
    FilterKind.BOX_BLUR: FilterSignature((ArgType.RADIUS,)),
    FilterKind.GAUSSIAN_BLUR: FilterSignature((ArgType.RADIUS,)),
    FilterKind.DILATE: FilterSignature((ArgType.RADIUS,)),
    FilterKind.ERODE: FilterSignature((ArgType.RADIUS,)),
    FilterKind.EDGE_DETECTION: FilterSignature((_F,), defaults=(1.0,)),
    FilterKind.SOBEL: FilterSignature(_B),
    FilterKind.EMBOSS: FilterSignature((_F,)),
    FilterKind.MEDIAN: FilterSignature((ArgType.RADIUS,)),
    FilterKind.SHARPEN: FilterSignature((_F,)),
    FilterKind.BRIGHTNESS: FilterSignature((_F,)),
    FilterKind.CONTRAST: FilterSignature((_F,)),
    FilterKind.GAMMA: FilterSignature((ArgType.POSITIVE,)),
    FilterKind.HUE: FilterSignature((_F,)),
    FilterKind.SATURATION: FilterSignature((_F,)),
    FilterKind.SEPIA: FilterSignature((_F,)),
    FilterKind.THRESHOLD: FilterSignature((_F,)),
    FilterKind.COLOR_BALANCE: FilterSignature((_F, _F, _F)),
    FilterKind.COLORIZE: FilterSignature((_F, _F, _F)),
    FilterKind.LINEAR_TO_SRGB: FilterSignature((_F,)),
    FilterKind.SRGB_TO_LINEAR: FilterSignature((_F,)),
    FilterKind.CROP: FilterSignature((ArgType.INT, ArgType.INT, ArgType.SIZE, ArgType.SIZE)),
    FilterKind.CROP_TO_SIZE: FilterSignature((ArgType.SIZE, ArgType.SIZE, ArgType.ANCHOR)),
    FilterKind.FLIP_HORIZONTAL: FilterSignature(_B),
    FilterKind.FLIP_VERTICAL: FilterSignature(_B),
    FilterKind.INVERT: FilterSignature(_B),
    FilterKind.GRAYSCALE: FilterSignature(_B),
    FilterKind.ROTATE_180: FilterSignature(_B),
    FilterKind.ROTATE_270: FilterSignature(_B),
    FilterKind.ROTATE_90: FilterSignature(_B),
    FilterKind.TRANSPOSE: FilterSignature(_B),
    FilterKind.TRANSVERSE: FilterSignature(_B),
    FilterKind.RESIZE: FilterSignature((ArgType.INT, ArgType.INT, ArgType.RESAMPLE)),
    FilterKind.ROTATE: FilterSignature((_F, ArgType.EDGE, ArgType.INTERPOLATION)),
}

# Query keys -> kind. Canonical values plus the legacy camel-case blur spelling.
FILTER_KEYS: Dict[str, FilterKind] = {kind.value: kind for kind in FilterKind}
FILTER_KEYS["gaussianBlur"] = FilterKind.GAUSSIAN_BLUR


@dataclass(frozen=True)
class FilterInvocation:
    """One parsed, typed image-transform request."""
    kind: FilterKind
    arguments: Tuple[ArgValue, ...] = ()

    def describe(self) -> str:
        args = ",".join(str(a.value if isinstance(a, Enum) else a) for a in self.arguments)
        return f"{self.kind.value}={args}"


OUTPUT_FORMATS: Dict[str, str] = {
    "png": "PNG",
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "gif": "GIF",
    "tiff": "TIFF",
    "tif": "TIFF",
}


@dataclass(frozen=True)
class AssetQuery:
    """Parsed asset query: ordered filter chain plus output options."""
    filters: Tuple[FilterInvocation, ...] = ()
    output_format: Optional[str] = None
    quality: Optional[int] = None

    @property
    def needs_pipeline(self) -> bool:
        return bool(self.filters) or self.output_format is not None
