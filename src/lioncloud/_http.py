"""Single HTTP exchange with the vendor API."""

from __future__ import annotations

import json
from dataclasses import dataclass

import aiohttp

from lioncloud._constants import HTTP_TIMEOUT
from lioncloud.errors import MalformedResponseError, TransportError


@dataclass(frozen=True)
class ApiResponse:
    """A fully-read HTTP response."""

    status: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> object:
        """Decode the body as JSON.

        Raises :class:`MalformedResponseError` if the body is not valid JSON.
        """
        try:
            return json.loads(self.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedResponseError(f"Undecodable response body: {e}") from e


def encode_body(body: object) -> str:
    """Serialize a request body as compact JSON."""
    return json.dumps(body, separators=(",", ":"))


async def request(
    method: str,
    url: str,
    *,
    headers: dict[str, str],
    body: object | None = None,
    timeout: float = HTTP_TIMEOUT,
) -> ApiResponse:
    """Perform one request and read the whole response.

    Network failures and timeouts are raised as :class:`TransportError`;
    every HTTP status is returned to the caller.
    """
    data = encode_body(body) if body is not None else None
    try:
        async with aiohttp.ClientSession() as session:
            async with session.request(
                method,
                url,
                data=data,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                return ApiResponse(resp.status, await resp.read())
    except (aiohttp.ClientError, TimeoutError) as e:
        raise TransportError(f"{method} {url} failed: {str(e) or type(e).__name__}") from e
