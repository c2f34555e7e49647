"""Authenticated request path shared by polling and device commands."""

from __future__ import annotations

import logging

from lioncloud import _http
from lioncloud._constants import API_BASE, APP_HEADERS
from lioncloud._crypto import signature_headers
from lioncloud.errors import UnauthorizedError
from lioncloud.session import SessionManager

_LOGGER = logging.getLogger(__name__)


class CommandExecutor:
    """Issues signed, bearer-authenticated requests.

    A ``401`` answer triggers one re-authentication and one retry; a second
    ``401`` raises :class:`UnauthorizedError`.  All other statuses are
    returned for the caller to classify.
    """

    def __init__(self, session: SessionManager, *, base_url: str = API_BASE) -> None:
        self._session = session
        self._base_url = base_url

    async def execute(
        self,
        method: str,
        path: str,
        body: object | None = None,
        *,
        allow_retry: bool = True,
    ) -> _http.ApiResponse:
        token = await self._session.ensure_fresh()
        headers = {**APP_HEADERS, "Authorization": f"Bearer {token.access_token}"}
        identity = self._session.identity
        if identity is not None:
            headers.update(signature_headers(identity))

        resp = await _http.request(method, self._base_url + path, headers=headers, body=body)

        if resp.status == 401:
            if not allow_retry:
                raise UnauthorizedError(f"{method} {path}: unauthorized after re-authentication")
            _LOGGER.info("Received 401 for %s %s, re-authenticating", method, path)
            await self._session.reauthenticate(token)
            return await self.execute(method, path, body, allow_retry=False)
        return resp
