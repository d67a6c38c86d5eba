from .headers import (
    MAX_MEDIA_TYPES,
    MediaType,
    format_accept,
    media_type_matches,
    parse_accept,
    parse_preferred,
    quality_for,
    sort_media_types,
)
from .middleware import AcceptMiddleware
from .negotiation import (
    AcceptState,
    accepts,
    best_match,
    canonicalize,
    filter_accept,
    prefer,
    quality,
)

__all__ = [
    "AcceptMiddleware",
    "AcceptState",
    "MAX_MEDIA_TYPES",
    "MediaType",
    "accepts",
    "best_match",
    "canonicalize",
    "filter_accept",
    "format_accept",
    "media_type_matches",
    "parse_accept",
    "parse_preferred",
    "prefer",
    "quality",
    "quality_for",
    "sort_media_types",
]
