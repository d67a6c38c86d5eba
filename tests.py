"""Main tests for Accept header negotiation and the Accept middleware."""

import functools

import pytest

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from accept_asgi import (
    MAX_MEDIA_TYPES,
    AcceptMiddleware,
    AcceptState,
    MediaType,
    accepts,
    best_match,
    canonicalize,
    filter_accept,
    format_accept,
    media_type_matches,
    parse_accept,
    parse_preferred,
    prefer,
    quality,
    sort_media_types,
)


@pytest.fixture
def test_client_factory(anyio_backend_name, anyio_backend_options):
    return functools.partial(
        TestClient,
        backend=anyio_backend_name,
        backend_options=anyio_backend_options,
    )


def echo_accept(request: Request):
    return JSONResponse(
        {
            "accept": request.headers.get("accept"),
            "state": getattr(request.state, "accept", None),
            "original": getattr(request.state, "accept_original", None),
            "has_state": isinstance(
                getattr(request.state, "accept_state", None), AcceptState
            ),
        }
    )


# --- Parsing ---


@pytest.mark.parametrize(
    "header, expected",
    [
        ("text/html", [MediaType("text/html", 1.0)]),
        ("TEXT/HTML ; q=0.5", [MediaType("text/html", 0.5)]),
        # out-of-range values are clamped
        ("text/html;q=5", [MediaType("text/html", 1.0)]),
        ("text/html;q=-3", [MediaType("text/html", 0.0)]),
        # unparseable q keeps the default
        ("text/html;q=abc", [MediaType("text/html", 1.0)]),
        ("text/html;q=", [MediaType("text/html", 1.0)]),
        # numeric prefix is used
        ("text/html;q=0.5abc", [MediaType("text/html", 0.5)]),
        ("text/html;q= .25", [MediaType("text/html", 0.25)]),
        ("text/html;Q=0.3", [MediaType("text/html", 0.3)]),
        # infinities and hex floats are numbers too, then clamped
        ("text/html;q=-inf", [MediaType("text/html", 0.0)]),
        ("text/html;q=Infinity", [MediaType("text/html", 1.0)]),
        ("text/html;q=0x1p-1", [MediaType("text/html", 0.5)]),
        ("text/html;q=0x", [MediaType("text/html", 0.0)]),
        ("text/html;q=nan", [MediaType("text/html", 1.0)]),
        # only a parameter named exactly "q" counts
        ("text/html;qs=0.3", [MediaType("text/html", 1.0)]),
        ("text/html;q =0.3", [MediaType("text/html", 1.0)]),
        ("text/html;level=1;q=0.4;charset=utf-8", [MediaType("text/html", 0.4)]),
        # empty segments are skipped
        (" , text/html,, ;q=0.5, image/png", [
            MediaType("text/html", 1.0),
            MediaType("image/png", 1.0),
        ]),
        ("", []),
        (None, []),
    ],
)
def test_parse_accept(header, expected):
    assert parse_accept(header) == expected


def test_parse_accept_keeps_header_order():
    entries = parse_accept("text/plain;q=0.2, application/json, */*;q=0.8")
    assert [e.type for e in entries] == ["text/plain", "application/json", "*/*"]


def test_parse_accept_capacity():
    header = ", ".join(f"type/sub{i}" for i in range(MAX_MEDIA_TYPES + 36))
    entries = parse_accept(header)
    assert len(entries) == MAX_MEDIA_TYPES
    assert entries[-1].type == f"type/sub{MAX_MEDIA_TYPES - 1}"


def test_parse_accept_returns_fresh_list():
    first = parse_accept("text/html, image/png")
    first.clear()
    assert len(parse_accept("text/html, image/png")) == 2


def test_parse_preferred():
    assert parse_preferred(" Text/HTML , ,application/json,") == [
        "text/html",
        "application/json",
    ]
    assert parse_preferred("") == []
    assert parse_preferred(None) == []
    many = ",".join(f"a/b{i}" for i in range(MAX_MEDIA_TYPES + 1))
    assert len(parse_preferred(many)) == MAX_MEDIA_TYPES


# --- Matching and ranking ---


@pytest.mark.parametrize(
    "pattern, concrete, expected",
    [
        ("*/*", "image/png", True),
        ("*/*", "anything", True),
        ("text/*", "text/plain", True),
        ("text/*", "text/*", True),
        ("text/*", "image/png", False),
        ("text/*", "texts/plain", False),
        ("text/html", "text/html", True),
        ("text/html", "text/plain", False),
        # the wildcard only covers the subtype
        ("*/html", "text/html", False),
        # values without a slash compare by equality
        ("text", "text", True),
        ("text/*", "text", False),
        ("*", "text/html", False),
    ],
)
def test_media_type_matches(pattern, concrete, expected):
    assert media_type_matches(pattern, concrete) is expected


def test_sort_media_types():
    entries = parse_accept("b/b;q=0.5, */*;q=0.1, a/a;q=0.5, c/c, a/b")
    assert [e.type for e in sort_media_types(entries)] == [
        "a/b",
        "c/c",
        "a/a",
        "b/b",
        "*/*",
    ]
    assert sort_media_types([]) == []


def test_format_accept():
    assert format_accept([]) == ""
    assert format_accept(
        [MediaType("text/html", 1.0), MediaType("*/*", 0.0), MediaType("a/b", 0.25)]
    ) == "text/html, */*;q=0.0, a/b;q=0.2"
    # a weight that rounds to 1.0 is written without q
    assert format_accept([MediaType("text/html", 0.97)]) == "text/html"


# --- canonicalize ---


@pytest.mark.parametrize(
    "header, expected",
    [
        (
            "text/html, application/xhtml+xml;q=0.9, */*;q=0.8",
            "text/html, application/xhtml+xml;q=0.9, */*;q=0.8",
        ),
        (
            "application/xml;q=0.9, TEXT/HTML, Application/JSON, */*;q=0.8",
            "application/json, text/html, application/xml;q=0.9, */*;q=0.8",
        ),
        ("image/png;q=0, image/*;q=0.5", "image/*;q=0.5, image/png;q=0.0"),
        ("text/html;level=1;q=1.0", "text/html"),
        # ranked at the written precision
        ("b/b;q=0.44, a/a;q=0.36", "a/a;q=0.4, b/b;q=0.4"),
        ("b/b;q=0.97, a/a", "a/a, b/b"),
        ("", ""),
        (None, ""),
    ],
)
def test_canonicalize(header, expected):
    assert canonicalize(header) == expected


@pytest.mark.parametrize(
    "header",
    [
        "text/html, application/xhtml+xml;q=0.9, */*;q=0.8",
        "b/b;q=0.3, a/a;q=0.3, c/c;q=5, d/d;q=-1",
        "text/*;q=0.5, , IMAGE/PNG;foo=bar",
        "b/b;q=0.44, a/a;q=0.36",
        "z/z;q=0.96, c/c;q=0.149, a/a, d/d;q=0.05",
    ],
)
def test_canonicalize_idempotent(header):
    once = canonicalize(header)
    assert canonicalize(once) == once


def test_canonicalize_ranking_invariant():
    entries = parse_accept(canonicalize("x/y;q=0.2, a/b;q=0.8, c/d, b/a;q=0.8, z/z"))
    for current, following in zip(entries, entries[1:]):
        assert current.quality >= following.quality
        if current.quality == following.quality:
            assert current.type <= following.type


# --- filter ---


@pytest.mark.parametrize(
    "header, preferred, expected",
    [
        # nothing accepted: first preferred type alone
        ("image/png", "text/html,application/xml", "text/html"),
        (
            "text/html;q=0.5, application/*;q=0.8",
            "application/json, text/html, image/png",
            "application/json;q=0.8, text/html;q=0.5",
        ),
        # best matching entry wins, not the first one
        ("*/*;q=0.2, text/*;q=0.6", "text/plain", "text/plain;q=0.6"),
        ("text/html;q=0, application/json", "text/html, application/json", "application/json"),
        # no header: first preferred
        (None, "Application/JSON, text/html", "application/json"),
        ("", "application/json", "application/json"),
        # no preference list: canonical form
        ("text/plain;q=0.5, text/html", None, "text/html, text/plain;q=0.5"),
        ("text/html", "", "text/html"),
        # preference list with no usable types
        ("text/html", " , ", ""),
        (None, " , ", ""),
        (None, None, ""),
    ],
)
def test_filter_accept(header, preferred, expected):
    assert filter_accept(header, preferred) == expected


# --- best_match ---


@pytest.mark.parametrize(
    "header, preferred, expected",
    [
        (None, "application/json,text/html", "application/json"),
        (
            "text/html;q=0.9, application/json;q=0.8",
            "application/json, text/html",
            "text/html",
        ),
        # ties keep the earliest preferred type
        ("text/*", "text/plain, text/html", "text/plain"),
        ("*/*;q=0.5, image/png", "text/html, image/png", "image/png"),
        # the first preferred type is kept even when not accepted
        ("text/html;q=0", "application/json", "application/json"),
        ("image/png", "text/html, application/xml", "text/html"),
        ("text/html", None, ""),
        ("text/html", " , ", ""),
    ],
)
def test_best_match(header, preferred, expected):
    assert best_match(header, preferred) == expected


# --- prefer ---


@pytest.mark.parametrize(
    "header, preferred, expected",
    [
        # nothing accepted: header passes through untouched
        ("text/plain;q=0.8", "application/json", "text/plain;q=0.8"),
        ("Text/HTML;q=0.5", "application/json", "Text/HTML;q=0.5"),
        # preferred order beats header quality
        (
            "text/html;q=0.1, application/json",
            "text/html, application/json",
            "text/html",
        ),
        # a zero-weight entry does not count, a wildcard still can
        ("text/html;q=0, */*;q=0.5", "text/html", "text/html"),
        ("text/html;q=0", "text/html, image/png", "text/html;q=0"),
        ("image/*", "text/html, image/webp", "image/webp"),
        (None, "text/html", ""),
        ("", "text/html", ""),
        ("text/html", None, "text/html"),
        ("text/html", " , ", "text/html"),
    ],
)
def test_prefer(header, preferred, expected):
    assert prefer(header, preferred) == expected


# --- quality / accepts ---


@pytest.mark.parametrize(
    "header, media_type, expected",
    [
        # exact beats wildcard regardless of order or weight
        ("text/*;q=0.5, */*;q=0.1, text/html;q=0.9", "text/html", 0.9),
        ("*/*, text/html;q=0.2", "text/html", 0.2),
        ("text/html;q=0, */*", "text/html", 0.0),
        ("text/*;q=0.5", "text/plain", 0.5),
        ("*/*;q=0.2", "image/png", 0.2),
        # main/* beats */*
        ("*/*;q=0.2, text/*;q=0.4", "text/plain", 0.4),
        ("*/*;q=0.9, text/*;q=0.4", "text/plain", 0.4),
        # first occurrence of each wildcard kind counts
        ("text/*;q=0.3, text/*;q=0.7", "text/css", 0.3),
        ("*/*;q=0.3, */*;q=0.7", "text/css", 0.3),
        ("image/png", "text/html", 0.0),
        ("TEXT/HTML;q=0.5", " Text/Html ", 0.5),
        ("*/*;q=0.6", "plain", 0.6),
        (None, "text/html", 0.0),
        ("text/html", None, 0.0),
        ("", "", 0.0),
    ],
)
def test_quality(header, media_type, expected):
    assert quality(header, media_type) == pytest.approx(expected)


def test_quality_clamping():
    assert quality("text/html;q=5", "text/html") == 1.0
    assert quality("text/html;q=-3", "text/html") == 0.0


@pytest.mark.parametrize(
    "header, media_type, expected",
    [
        ("*/*", "image/png", True),
        ("text/html;q=0, */*", "text/html", False),
        ("text/html;q=0.1", "text/html", True),
        ("application/json", "text/html", False),
        (None, "text/html", False),
        ("text/html", "", False),
    ],
)
def test_accepts(header, media_type, expected):
    assert accepts(header, media_type) is expected


# --- AcceptState ---


def test_state_reuse_matches_fresh_calls():
    state = AcceptState()
    calls = [
        (canonicalize, ("b/b;q=0.5, a/a",)),
        (filter_accept, ("text/*;q=0.5", "text/plain, image/png")),
        (best_match, ("image/png", "text/html, image/png")),
        (prefer, ("text/plain;q=0.8", "application/json")),
        (quality, ("text/*;q=0.5", "text/css")),
        (accepts, ("*/*", "a/b")),
        (filter_accept, (None, "application/json")),
    ]
    for operation, args in calls:
        assert operation(*args, state=state) == operation(*args)


def test_state_holds_last_call():
    state = AcceptState()
    canonicalize("b/b;q=0.5, a/a", state=state)
    assert state.entries == [MediaType("a/a", 1.0), MediaType("b/b", 0.5)]

    filter_accept("text/html", "Text/HTML, image/png", state=state)
    assert state.entries == [MediaType("text/html", 1.0)]
    assert state.preferred == ["text/html", "image/png"]

    quality(None, "text/html", state=state)
    assert state.entries == []
    assert state.preferred == []


# --- Middleware ---


def test_canonicalizes_accept_header(test_client_factory):
    app = Starlette(routes=[Route("/", echo_accept)])
    app.add_middleware(AcceptMiddleware)

    client = test_client_factory(app)
    response = client.get(
        "/", headers={"accept": "application/xml;q=0.9, TEXT/HTML"}
    )
    assert response.status_code == 200
    assert response.json() == {
        "accept": "text/html, application/xml;q=0.9",
        "state": "text/html, application/xml;q=0.9",
        "original": "application/xml;q=0.9, TEXT/HTML",
        "has_state": True,
    }
    assert response.headers["Vary"] == "Accept"


def test_filter_mode(test_client_factory):
    app = Starlette(routes=[Route("/", echo_accept)])
    app.add_middleware(
        AcceptMiddleware,
        preferred=["application/json", "text/html"],
        mode="filter",
    )

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/html;q=0.5, */*;q=0.1"})
    assert response.json()["accept"] == "text/html;q=0.5, application/json;q=0.1"


def test_best_match_mode_without_accept(test_client_factory):
    app = Starlette(routes=[Route("/", echo_accept)])
    app.add_middleware(
        AcceptMiddleware,
        preferred="application/json, text/html",
        mode="best_match",
    )

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": ""})
    assert response.json()["accept"] == "application/json"

    response = client.get("/", headers={"accept": "text/*"})
    assert response.json()["accept"] == "text/html"


def test_repeated_accept_headers_are_joined(test_client_factory):
    app = Starlette(routes=[Route("/", echo_accept)])
    app.add_middleware(AcceptMiddleware)

    client = test_client_factory(app)
    response = client.get(
        "/",
        headers=[("accept", "text/html"), ("accept", "application/json;q=0.5")],
    )
    assert response.json()["accept"] == "text/html, application/json;q=0.5"
    assert response.json()["original"] == "text/html, application/json;q=0.5"


def test_prefer_mode_passes_unmatched_header(test_client_factory):
    app = Starlette(routes=[Route("/", echo_accept)])
    app.add_middleware(AcceptMiddleware, preferred="application/json", mode="prefer")

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/plain;q=0.8"})
    assert response.json()["accept"] == "text/plain;q=0.8"


def test_empty_result_removes_header(test_client_factory):
    app = Starlette(routes=[Route("/", echo_accept)])
    app.add_middleware(AcceptMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": " , "})
    assert response.json()["accept"] is None
    assert response.json()["state"] == ""


def test_excluded_handlers(test_client_factory):
    app = Starlette(routes=[Route("/excluded", echo_accept)])
    app.add_middleware(AcceptMiddleware, excluded_handlers=["/excluded"])

    client = test_client_factory(app)
    response = client.get("/excluded", headers={"accept": "TEXT/HTML;q=0.5"})
    assert response.json() == {
        "accept": "TEXT/HTML;q=0.5",
        "state": None,
        "original": None,
        "has_state": False,
    }
    assert "Vary" not in response.headers


def test_vary_header_is_merged(test_client_factory):
    def homepage(request):
        return PlainTextResponse("OK", headers={"vary": "Accept-Encoding"})

    def already_varies(request):
        return PlainTextResponse("OK", headers={"vary": "accept"})

    app = Starlette(
        routes=[Route("/", homepage), Route("/varies", already_varies)]
    )
    app.add_middleware(AcceptMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/plain"})
    assert response.headers["Vary"] == "Accept-Encoding, Accept"

    response = client.get("/varies", headers={"accept": "text/plain"})
    assert response.headers["Vary"] == "accept"


def test_vary_header_with_repeated_lines(test_client_factory):
    def varies(request):
        response = PlainTextResponse("OK")
        response.headers.append("vary", "Accept-Encoding")
        response.headers.append("vary", "Accept")
        return response

    def varies_elsewhere(request):
        response = PlainTextResponse("OK")
        response.headers.append("vary", "Accept-Encoding")
        response.headers.append("vary", "Origin")
        return response

    app = Starlette(
        routes=[Route("/", varies), Route("/elsewhere", varies_elsewhere)]
    )
    app.add_middleware(AcceptMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/plain"})
    assert response.headers.get_list("vary") == ["Accept-Encoding", "Accept"]

    response = client.get("/elsewhere", headers={"accept": "text/plain"})
    assert response.headers.get_list("vary") == [
        "Accept-Encoding",
        "Origin",
        "Accept",
    ]


def test_vary_header_disabled(test_client_factory):
    app = Starlette(routes=[Route("/", echo_accept)])
    app.add_middleware(AcceptMiddleware, add_vary_header=False)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/plain"})
    assert "Vary" not in response.headers


@pytest.mark.parametrize(
    "accept, expected_status",
    [
        ("image/png", 406),
        ("application/json;q=0, text/html", 406),
        ("application/*;q=0.1", 200),
        ("*/*", 200),
        ("", 200),
    ],
)
def test_not_acceptable_response(test_client_factory, accept, expected_status):
    app = Starlette(routes=[Route("/", echo_accept)])
    app.add_middleware(
        AcceptMiddleware,
        preferred="application/json",
        mode="best_match",
        not_acceptable_response=True,
    )

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": accept})
    assert response.status_code == expected_status
    if expected_status == 406:
        assert response.text == "Not Acceptable"
        assert response.headers["Vary"] == "Accept"
    else:
        assert response.json()["accept"] == "application/json"


def test_invalid_configuration():
    app = Starlette()
    with pytest.raises(ValueError):
        AcceptMiddleware(app, mode="negotiate")
    with pytest.raises(ValueError):
        AcceptMiddleware(app, mode="filter")
    with pytest.raises(ValueError):
        AcceptMiddleware(app, preferred=[], mode="prefer")
