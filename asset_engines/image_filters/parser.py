"""Parse an asset request's raw query string into an ordered, typed filter chain.

Each non-reserved key is a filter name and its value a comma-separated argument list.
Chain order is the order keys appear in the query string; it governs the output image
and is preserved exactly, including repeated keys.
"""
from __future__ import annotations

import logging
import math
from typing import FrozenSet, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl

from asset_engines.common.errors import InvalidFilterArgument
from asset_engines.config import runtime_config
from asset_engines.image_filters.models import (
    ANCHOR_ALIASES,
    ENUM_ARG_TYPES,
    FILTER_KEYS,
    FILTER_SIGNATURES,
    OUTPUT_FORMATS,
    Anchor,
    ArgType,
    ArgValue,
    AssetQuery,
    FilterInvocation,
    FilterKind,
)

logger = logging.getLogger(__name__)

FORMAT_KEY = "format"
QUALITY_KEY = "quality"
RESERVED_QUERY_KEYS: FrozenSet[str] = frozenset({FORMAT_KEY, QUALITY_KEY, "token", "access_token"})

TRUTHY_TOKENS = frozenset({"true", "1"})


def split_query(raw_query: str) -> List[Tuple[str, str]]:
    """Ordered (key, value) pairs; blank values kept, duplicates kept."""
    if not raw_query:
        return []
    return parse_qsl(raw_query.lstrip("?"), keep_blank_values=True)


def _parse_float(name: str, token: str) -> float:
    try:
        value = float(token)
    except ValueError:
        raise InvalidFilterArgument(name, token, "expected a number") from None
    if not math.isfinite(value):
        raise InvalidFilterArgument(name, token, "expected a finite number")
    return value


def _parse_int(name: str, token: str) -> int:
    try:
        return int(token)
    except ValueError:
        raise InvalidFilterArgument(name, token, "expected an integer") from None


def _parse_arg(name: str, arg_type: ArgType, token: str) -> ArgValue:
    token = token.strip()
    if arg_type is ArgType.BOOL:
        return token in TRUTHY_TOKENS
    if arg_type is ArgType.FLOAT:
        return _parse_float(name, token)
    if arg_type is ArgType.RADIUS:
        value = _parse_float(name, token)
        if value < 0:
            raise InvalidFilterArgument(name, token, "must not be negative")
        limit = runtime_config.get_max_filter_radius()
        if value > limit:
            raise InvalidFilterArgument(name, token, f"must be at most {limit}")
        return value
    if arg_type is ArgType.POSITIVE:
        value = _parse_float(name, token)
        if value <= 0:
            raise InvalidFilterArgument(name, token, "must be greater than zero")
        return value
    if arg_type is ArgType.INT:
        value = _parse_int(name, token)
        if value < 0:
            raise InvalidFilterArgument(name, token, "must not be negative")
        return value
    if arg_type is ArgType.SIZE:
        value = _parse_int(name, token)
        if value < 1:
            raise InvalidFilterArgument(name, token, "must be at least 1")
        return value
    enum_type = ENUM_ARG_TYPES[arg_type]
    try:
        return enum_type(token)
    except ValueError:
        if enum_type is Anchor and token in ANCHOR_ALIASES:
            return ANCHOR_ALIASES[token]
        choices = ", ".join(member.value for member in enum_type)
        raise InvalidFilterArgument(name, token, f"expected one of {choices}") from None


def parse_filter(name: str, kind: FilterKind, raw_value: str) -> FilterInvocation:
    """Parse one ``key=value`` pair against the kind's signature."""
    signature = FILTER_SIGNATURES[kind]
    tokens: Sequence[str] = raw_value.split(",") if raw_value.strip() else []
    if not signature.min_arity <= len(tokens) <= len(signature.args):
        expected = (
            str(len(signature.args))
            if signature.min_arity == len(signature.args)
            else f"{signature.min_arity}-{len(signature.args)}"
        )
        raise InvalidFilterArgument(name, raw_value, f"expected {expected} argument(s), got {len(tokens)}")
    arguments = [_parse_arg(name, arg_type, token) for arg_type, token in zip(signature.args, tokens)]
    missing = len(signature.args) - len(arguments)
    if missing:
        arguments.extend(signature.defaults[len(signature.defaults) - missing:])
    invocation = FilterInvocation(kind=kind, arguments=tuple(arguments))
    _check_invocation(name, raw_value, invocation)
    return invocation


def check_output_size(name: str, token: str, width: int, height: int) -> None:
    """Reject output rasters larger than the configured dimension or pixel budget."""
    max_dimension = runtime_config.get_max_output_dimension()
    if width > max_dimension or height > max_dimension:
        raise InvalidFilterArgument(name, token, f"width and height must be at most {max_dimension}")
    max_pixels = runtime_config.get_max_output_pixels()
    if width * height > max_pixels:
        raise InvalidFilterArgument(name, token, f"output must be at most {max_pixels} pixels")


def _check_invocation(name: str, raw_value: str, invocation: FilterInvocation) -> None:
    if invocation.kind is FilterKind.RESIZE:
        width, height = invocation.arguments[0], invocation.arguments[1]
        if width == 0 and height == 0:
            raise InvalidFilterArgument(name, raw_value, "width and height cannot both be 0")
        check_output_size(name, raw_value, width, height)
    elif invocation.kind is FilterKind.CROP_TO_SIZE:
        check_output_size(name, raw_value, invocation.arguments[0], invocation.arguments[1])


def parse_filter_chain(
    raw_query: str,
    reserved_keys: FrozenSet[str] = RESERVED_QUERY_KEYS,
) -> List[FilterInvocation]:
    """Ordered filter chain; unknown keys are ignored, malformed arguments fail the request."""
    chain: List[FilterInvocation] = []
    for name, raw_value in split_query(raw_query):
        if name in reserved_keys:
            continue
        kind = FILTER_KEYS.get(name)
        if kind is None:
            logger.debug("Ignoring unknown asset query key %s", name)
            continue
        chain.append(parse_filter(name, kind, raw_value))
    return chain


def parse_output_options(raw_query: str) -> Tuple[Optional[str], Optional[int]]:
    """Target format and JPEG quality overrides; last occurrence wins."""
    output_format: Optional[str] = None
    quality: Optional[int] = None
    for name, raw_value in split_query(raw_query):
        if name == FORMAT_KEY:
            token = raw_value.strip().lower()
            if token not in OUTPUT_FORMATS:
                raise InvalidFilterArgument(
                    FORMAT_KEY, raw_value, f"expected one of {', '.join(sorted(OUTPUT_FORMATS))}"
                )
            output_format = OUTPUT_FORMATS[token]
        elif name == QUALITY_KEY:
            value = _parse_int(QUALITY_KEY, raw_value.strip())
            if not 1 <= value <= 100:
                raise InvalidFilterArgument(QUALITY_KEY, raw_value, "must be between 1 and 100")
            quality = value
    return output_format, quality


def parse_asset_query(raw_query: str) -> AssetQuery:
    output_format, quality = parse_output_options(raw_query)
    return AssetQuery(
        filters=tuple(parse_filter_chain(raw_query)),
        output_format=output_format,
        quality=quality,
    )
