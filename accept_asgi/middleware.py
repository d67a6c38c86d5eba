"""
ASGI middleware that normalizes the request Accept header.
"""
import logging
import re
from typing import Callable, Literal, Sequence

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .negotiation import (
    AcceptState,
    accepts,
    best_match,
    canonicalize,
    filter_accept,
    prefer,
)

logger = logging.getLogger(__name__)

NegotiationMode = Literal["canonicalize", "filter", "best_match", "prefer"]


def _canonicalize(accept: str | None, preferred: str | None, *, state: AcceptState) -> str:
    return canonicalize(accept, state=state)


OPERATIONS: dict[str, Callable[..., str]] = {
    "canonicalize": _canonicalize,
    "filter": filter_accept,
    "best_match": best_match,
    "prefer": prefer,
}


class AcceptMiddleware:
    """
    Rewrites the request Accept header with the result of one negotiation
    operation, so that handlers and caches downstream see a normalized value.

    The original header, the rewritten value and the request's AcceptState
    are stored in the scope state (``request.state.accept_original``,
    ``request.state.accept`` and ``request.state.accept_state``).
    """

    def __init__(
        self,
        app: ASGIApp,
        preferred: str | Sequence[str] | None = None,
        mode: NegotiationMode = "canonicalize",
        excluded_handlers: Sequence[str] | None = None,
        add_vary_header: bool = True,
        not_acceptable_response: bool = False,
    ) -> None:
        if mode not in OPERATIONS:
            raise ValueError(
                f"Unknown negotiation mode {mode!r}, "
                f"expected one of {', '.join(OPERATIONS)}"
            )

        if preferred is not None and not isinstance(preferred, str):
            preferred = ",".join(preferred)
        if mode != "canonicalize" and not preferred:
            raise ValueError(f"Negotiation mode {mode!r} requires preferred types")

        self.app = app
        self.preferred = preferred or None
        self.mode = mode
        self.operation = OPERATIONS[mode]
        self.excluded_handlers = [re.compile(path) for path in excluded_handlers or []]
        self.add_vary_header = add_vary_header
        self.not_acceptable_response = not_acceptable_response

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self._is_excluded(scope):
            await self.app(scope, receive, send)
            return

        if self.add_vary_header:
            send = self._vary_send(send)

        # Repeated Accept fields form one comma-separated list
        accept = ", ".join(Headers(scope=scope).getlist("accept")) or None
        state = AcceptState()

        if self.not_acceptable_response and not self._is_acceptable(accept, state):
            logger.info(
                "No preferred media type acceptable for %s (Accept: %r)",
                scope.get("path"),
                accept,
            )
            response = PlainTextResponse("Not Acceptable", status_code=406)
            await response(scope, receive, send)
            return

        result = self.operation(accept, self.preferred, state=state)
        self._rewrite(scope, result)
        logger.debug("Accept header %r rewritten to %r (%s)", accept, result, self.mode)

        scope_state = scope.setdefault("state", {})
        scope_state["accept_original"] = accept
        scope_state["accept"] = result
        scope_state["accept_state"] = state

        await self.app(scope, receive, send)

    def _is_excluded(self, scope: Scope) -> bool:
        path = scope.get("path", "")
        return any(pattern.match(path) for pattern in self.excluded_handlers)

    def _is_acceptable(self, accept: str | None, state: AcceptState) -> bool:
        # A missing header accepts anything
        if not accept or not self.preferred:
            return True
        state.load(None, self.preferred)
        return any(accepts(accept, media_type) for media_type in state.preferred)

    @staticmethod
    def _rewrite(scope: Scope, result: str) -> None:
        headers = MutableHeaders(scope=scope)
        if result:
            headers["accept"] = result
        elif "accept" in headers:
            del headers["accept"]

    @staticmethod
    def _vary_send(send: Send) -> Send:
        async def send_with_vary(message: Message) -> None:
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                headers = MutableHeaders(scope=message)
                lines = headers.getlist("vary")
                vary = [v.strip().lower() for line in lines for v in line.split(",")]
                if "accept" not in vary and "*" not in vary:
                    if len(lines) > 1:
                        # setting would collapse the other Vary lines
                        headers.append("vary", "Accept")
                    else:
                        headers.add_vary_header("Accept")
            await send(message)

        return send_with_vary
