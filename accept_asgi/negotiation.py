"""
Accept header negotiation against a server-side list of preferred media types.

Every operation takes the raw header and a second string; None and "" both
mean "no value". Nothing here raises on bad input: each operation falls back
to a fixed result instead.

An AcceptState may be passed to reuse one working buffer across calls. It is
reset at the start of each call and left filled with that call's parse
results. The same state must not be used by two calls at once.
"""
from .headers import (
    MediaType,
    accepted_quality,
    format_accept,
    media_type_matches,
    parse_accept,
    parse_preferred,
    quality_for,
    sort_media_types,
)


class AcceptState:
    """Reusable working buffer for one negotiation call at a time."""

    def __init__(self) -> None:
        self.entries: list[MediaType] = []
        self.preferred: list[str] = []

    def reset(self) -> None:
        self.entries.clear()
        self.preferred.clear()

    def load(self, accept: str | None = None, preferred: str | None = None) -> None:
        """Reset, then parse the given header and preference list."""
        self.reset()
        self.entries.extend(parse_accept(accept))
        self.preferred.extend(parse_preferred(preferred))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(entries={self.entries!r}, "
            f"preferred={self.preferred!r})"
        )


def _load(
    state: AcceptState | None, accept: str | None = None, preferred: str | None = None
) -> AcceptState:
    if state is None:
        state = AcceptState()
    state.load(accept, preferred)
    return state


def canonicalize(accept: str | None, *, state: AcceptState | None = None) -> str:
    """
    Returns the header re-serialized in ranked order:
    quality descending, then media type ascending.
    """
    if not accept:
        if state is not None:
            state.reset()
        return ""

    state = _load(state, accept)
    state.entries[:] = sort_media_types(state.entries)
    return format_accept(state.entries)


def filter_accept(
    accept: str | None, preferred: str | None, *, state: AcceptState | None = None
) -> str:
    """
    Narrows the header down to the preferred types the client accepts.

    Each kept type carries the best quality any matching header entry gives
    it. When none is accepted the first preferred type is returned alone.
    """
    if not preferred:
        return canonicalize(accept, state=state)

    if not accept:
        state = _load(state, None, preferred)
        return state.preferred[0] if state.preferred else ""

    state = _load(state, accept, preferred)

    # 1. Keep preferred types the client accepts, with their resolved weight
    kept: list[MediaType] = []
    for media_type in state.preferred:
        q_val = accepted_quality(state.entries, media_type)
        if q_val > 0.0:
            kept.append(MediaType(media_type, q_val))

    # 2. Nothing accepted: fall back to the server's first choice
    if not kept and state.preferred:
        kept.append(MediaType(state.preferred[0], 1.0))

    # 3. Rank and serialize
    return format_accept(sort_media_types(kept))


def best_match(
    accept: str | None, preferred: str | None, *, state: AcceptState | None = None
) -> str:
    """
    Returns the single preferred type with the highest accepted quality.

    Ties go to the type listed first. The running best starts below zero,
    so the first preferred type is picked even if the client gives it q=0
    and nothing later scores higher.
    """
    state = _load(state, accept, preferred)
    if not state.preferred:
        return ""

    if not accept:
        return state.preferred[0]

    best_type: str | None = None
    best_quality = -1.0
    for media_type in state.preferred:
        q_val = accepted_quality(state.entries, media_type)
        if q_val > best_quality:
            best_quality = q_val
            best_type = media_type

    if best_type is None:
        best_type = state.preferred[0]
    return best_type


def prefer(
    accept: str | None, preferred: str | None, *, state: AcceptState | None = None
) -> str:
    """
    Returns the first preferred type that some header entry admits with q > 0.

    Preferred order decides, not header quality. If nothing qualifies the
    original header is returned untouched.
    """
    if not accept:
        if state is not None:
            state.reset()
        return ""

    state = _load(state, accept, preferred)
    if not state.preferred:
        return accept

    for media_type in state.preferred:
        for entry in state.entries:
            if media_type_matches(entry.type, media_type) and entry.quality > 0.0:
                return media_type

    return accept


def quality(
    accept: str | None, media_type: str | None, *, state: AcceptState | None = None
) -> float:
    """
    Returns the weight the header gives `media_type`, 0.0 if not accepted.

    An exact entry beats "main/*", which beats "*/*".
    """
    if not accept or not media_type:
        if state is not None:
            state.reset()
        return 0.0

    state = _load(state, accept)
    return quality_for(state.entries, media_type.strip().lower())


def accepts(
    accept: str | None, media_type: str | None, *, state: AcceptState | None = None
) -> bool:
    """Tells whether the header accepts `media_type` with a non-zero weight."""
    return quality(accept, media_type, state=state) > 0.0
