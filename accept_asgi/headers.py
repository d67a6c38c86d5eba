"""
HTTP Accept header parsing, matching and ranking utilities.
"""
import logging
import re
from functools import lru_cache
from typing import Iterable, NamedTuple

logger = logging.getLogger(__name__)

# Upper bound on entries kept from one header (and on preferred types).
# Anything past it is dropped without error.
MAX_MEDIA_TYPES = 64

# Longest leading numeric literal of a q value ("0.5", ".5", "5e-1", "-inf", "0x1p-1").
_QVALUE_RE = re.compile(
    r"[+-]?(?:"
    r"(?P<hex>0x(?:[0-9a-f]+\.?[0-9a-f]*|\.[0-9a-f]+)(?:p[+-]?\d+)?)"
    r"|inf(?:inity)?"
    r"|(?:\d+\.?\d*|\.\d+)(?:e[+-]?\d+)?"
    r")",
    re.IGNORECASE,
)


class MediaType(NamedTuple):
    """A single normalized media range and its weight."""

    type: str
    quality: float = 1.0


def parse_qvalue(value: str) -> float | None:
    """
    Parses the value of a "q" parameter, clamped to [0.0, 1.0].
    Returns None when the value has no numeric prefix.
    """
    match = _QVALUE_RE.match(value.lstrip())
    if match is None:
        return None

    if match.group("hex"):
        q_val = float.fromhex(match.group())
    else:
        q_val = float(match.group())
    if q_val <= 0.0:
        return 0.0  # also folds -0.0
    if q_val > 1.0:
        return 1.0
    return q_val


def parse_part(part: str) -> MediaType | None:
    """
    Parses a single part of an 'Accept' header (e.g., "text/html;level=1;q=0.8").
    Returns a MediaType or None if the part has no media type.
    """
    components = part.strip().split(";")
    media_type = components[0].strip().lower()
    if not media_type:
        return None

    quality = 1.0  # Default q-factor is 1.0 per RFC

    # Only a parameter named exactly "q" carries weight; the rest are dropped
    for param in components[1:]:
        name, sep, value = param.lstrip().partition("=")
        if sep and name.lower() == "q":
            parsed = parse_qvalue(value)
            if parsed is not None:
                quality = parsed

    return MediaType(media_type, quality)


@lru_cache(maxsize=128)
def _parse_accept_cached(accept: str) -> tuple[MediaType, ...]:
    entries: list[MediaType] = []
    for part_str in accept.split(","):
        if len(entries) >= MAX_MEDIA_TYPES:
            logger.debug(
                "Accept header truncated at %d media types", MAX_MEDIA_TYPES
            )
            break
        parsed = parse_part(part_str)
        if parsed:
            entries.append(parsed)
    return tuple(entries)


def parse_accept(accept: str | None) -> list[MediaType]:
    """
    Parses an 'Accept' header into MediaType entries in header order.

    Results are LRU-cached per header string; every call returns a new list.
    """
    if not accept:
        return []
    return list(_parse_accept_cached(accept))


def parse_preferred(preferred: str | None) -> list[str]:
    """
    Parses a comma-separated list of server-preferred media types.
    Order is kept, empty items are skipped.
    """
    if not preferred:
        return []

    types: list[str] = []
    for item in preferred.split(","):
        if len(types) >= MAX_MEDIA_TYPES:
            break
        media_type = item.strip().lower()
        if media_type:
            types.append(media_type)
    return types


def media_type_matches(pattern: str, concrete: str) -> bool:
    """
    Tells whether an Accept entry `pattern` admits the media type `concrete`.

    "*/*" admits everything and "main/*" admits any "main/<sub>". Anything
    else, including values without a slash, must be equal.
    """
    if pattern == "*/*":
        return True

    p_main, p_slash, p_sub = pattern.partition("/")
    c_main, c_slash, _ = concrete.partition("/")
    if not p_slash or not c_slash:
        return pattern == concrete

    if p_sub == "*":
        return p_main == c_main

    return pattern == concrete


def sort_media_types(entries: Iterable[MediaType]) -> list[MediaType]:
    """
    Ranks entries by quality (highest first), then alphabetically by type.

    Quality is compared at the one-decimal precision format_accept writes,
    so re-parsing a serialized list ranks it the same way.
    """
    return sorted(entries, key=lambda m: (-_rounded_quality(m.quality), m.type))


def _rounded_quality(quality: float) -> float:
    return float(f"{quality:.1f}")


def quality_for(entries: Iterable[MediaType], media_type: str) -> float:
    """
    Looks up the weight a parsed Accept header gives to `media_type`.

    An exact entry always wins, wherever it appears. Otherwise a "main/*"
    entry beats "*/*". For each kind the first occurrence counts.
    Returns 0.0 when nothing applies.
    """
    main, slash, _ = media_type.partition("/")
    type_wildcard = f"{main}/*" if slash else None

    type_wildcard_q: float | None = None
    wildcard_q: float | None = None

    for entry in entries:
        if entry.type == media_type:
            return entry.quality

        if entry.type == "*/*":
            if wildcard_q is None:
                wildcard_q = entry.quality
        elif entry.type == type_wildcard:
            if type_wildcard_q is None:
                type_wildcard_q = entry.quality

    if type_wildcard_q is not None:
        return type_wildcard_q
    if wildcard_q is not None:
        return wildcard_q
    return 0.0


def accepted_quality(entries: Iterable[MediaType], media_type: str) -> float:
    """Highest quality among entries admitting `media_type`, or 0.0."""
    quality = 0.0
    for entry in entries:
        if media_type_matches(entry.type, media_type) and entry.quality > quality:
            quality = entry.quality
    return quality


def format_accept(entries: Iterable[MediaType]) -> str:
    """
    Serializes entries as "type1, type2;q=0.5, ...".
    The q parameter is written with one decimal and only below 1.0.
    """
    parts = []
    for entry in entries:
        q_text = f"{entry.quality:.1f}"
        if entry.quality < 1.0 and q_text != "1.0":
            parts.append(f"{entry.type};q={q_text}")
        else:
            parts.append(entry.type)
    return ", ".join(parts)
