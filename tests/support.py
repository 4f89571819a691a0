"""Test doubles shared by the unit and property suites."""

from __future__ import annotations

from collections.abc import Callable

import httpx

from statwatch.config.endpoints import EndpointConfig


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


Outcome = httpx.Response | Exception | Callable[[httpx.Request], httpx.Response]


class ScriptedTransport(httpx.MockTransport):
    """MockTransport answering each URL from a script of outcomes.

    Each URL (without query string) maps to a list of outcomes consumed in
    order; the last one repeats. An outcome is an ``httpx.Response``, an
    exception to raise, or a callable taking the request. Unknown URLs get
    a 404.
    """

    def __init__(self, script: dict[str, list[Outcome]] | None = None) -> None:
        self.script: dict[str, list[Outcome]] = {k: list(v) for k, v in (script or {}).items()}
        self.requests: list[httpx.Request] = []
        super().__init__(self._handle)

    def set(self, url: str, *outcomes: Outcome) -> None:
        self.script[url] = list(outcomes)

    def calls(self, url: str) -> int:
        return sum(1 for r in self.requests if base_url(r) == url)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcomes = self.script.get(base_url(request))
        if not outcomes:
            return httpx.Response(404, text="not found")
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(request)
        # copied because the last outcome repeats
        return httpx.Response(outcome.status_code, headers=outcome.headers, content=outcome.content)


def base_url(request: httpx.Request) -> str:
    return str(request.url).split("?", 1)[0]


def ok(payload: object) -> httpx.Response:
    return httpx.Response(200, json=payload)


def endpoint(name: str, *urls: str, **policy: object) -> EndpointConfig:
    """Build an EndpointConfig from bare URLs plus optional policy fields."""
    return EndpointConfig.model_validate({"name": name, "sources": list(urls), **policy})
