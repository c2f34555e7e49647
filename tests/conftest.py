"""Shared fixtures for lioncloud tests."""

from __future__ import annotations

import json
from typing import Any

import pytest
from aioresponses import aioresponses

from lioncloud._constants import API_BASE
from lioncloud._crypto import InstallationIdentity, generate_identity

INIT_URL = f"{API_BASE}/auth/init"
SIGNIN_URL = f"{API_BASE}/auth/signin"
REFRESH_URL = f"{API_BASE}/auth/refreshtoken"
THINGS_URL = f"{API_BASE}/things"
SERIAL = "GS012345"
DASHBOARD_URL = f"{THINGS_URL}/{SERIAL}/dashboard"
COMMAND_URL = f"{THINGS_URL}/{SERIAL}/command"

TOKENS: dict[str, Any] = {"accessToken": "access-1", "refreshToken": "refresh-1"}


class FakeClock:
    """Callable clock returning a settable epoch time."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def calls(m: aioresponses, method: str, url: str) -> list[Any]:
    """Return the recorded requests for *method* and *url*."""
    return [
        call
        for (meth, req_url), recorded in m.requests.items()
        if meth == method and str(req_url) == url
        for call in recorded
    ]


def total_calls(m: aioresponses) -> int:
    return sum(len(recorded) for recorded in m.requests.values())


def sent_json(call: Any) -> Any:
    return json.loads(call.kwargs["data"])


@pytest.fixture(scope="session")
def identity() -> InstallationIdentity:
    return generate_identity()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
