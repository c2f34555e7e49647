"""Installation identity and bearer-token lifecycle."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from lioncloud import _http
from lioncloud._constants import (
    API_BASE,
    APP_HEADERS,
    AUTH_INIT_PATH,
    AUTH_REFRESH_PATH,
    AUTH_SIGNIN_PATH,
    HEADER_INSTALLATION_ID,
    HEADER_PROOF,
    TOKEN_REFRESH_MARGIN,
    TOKEN_VALIDITY,
)
from lioncloud._crypto import (
    InstallationIdentity,
    generate_identity,
    registration_proof,
    signature_headers,
)
from lioncloud.errors import (
    AuthenticationError,
    MalformedResponseError,
    RegistrationError,
)

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionToken:
    """Access/refresh token pair with its assumed expiry (epoch seconds)."""

    access_token: str
    refresh_token: str
    expires_at: float

    def expires_within(self, margin: float, now: float) -> bool:
        return now + margin >= self.expires_at


class SessionManager:
    """Owns the installation identity and the current :class:`SessionToken`.

    The session moves from unregistered to registered (installation key
    accepted by ``/auth/init``) to authenticated (token present).  Both the
    identity and the token are immutable values replaced by assignment, so
    readers never wait.  Each has its own lock that only writers take, to
    avoid concurrent tasks registering or signing in twice.
    """

    def __init__(
        self,
        username: str,
        password: str,
        *,
        base_url: str = API_BASE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._username = username
        self._password = password
        self._base_url = base_url
        self._clock = clock
        self._identity: InstallationIdentity | None = None
        self._token: SessionToken | None = None
        self._identity_lock = asyncio.Lock()
        self._token_lock = asyncio.Lock()

    @property
    def identity(self) -> InstallationIdentity | None:
        """The registered installation identity, if any."""
        return self._identity

    @property
    def token(self) -> SessionToken | None:
        """The current token, if authenticated."""
        return self._token

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def ensure_registered(self) -> InstallationIdentity:
        """Generate and register an installation key unless one exists.

        Raises :class:`RegistrationError` if the key is rejected; the
        generated identity is then discarded so the next call starts over.
        """
        identity = self._identity
        if identity is not None:
            return identity
        async with self._identity_lock:
            if self._identity is not None:
                return self._identity
            identity = generate_identity()
            _, proof = registration_proof(identity)
            headers = {
                **APP_HEADERS,
                HEADER_INSTALLATION_ID: identity.installation_id,
                HEADER_PROOF: proof,
            }
            resp = await _http.request(
                "POST",
                self._base_url + AUTH_INIT_PATH,
                headers=headers,
                body={"pk": identity.public_key_b64},
            )
            if resp.status not in (200, 201):
                raise RegistrationError(f"Registration failed: {resp.status} - {resp.text}")
            self._identity = identity
        _LOGGER.info("Client registered, installation id %s", identity.installation_id)
        return identity

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def authenticate(self) -> SessionToken:
        """Sign in with the account credentials and store a new token."""
        async with self._token_lock:
            return await self._sign_in()

    async def refresh(self) -> SessionToken:
        """Renew the token, falling back to a full sign-in on rejection."""
        async with self._token_lock:
            return await self._refresh()

    async def ensure_fresh(self) -> SessionToken:
        """Return a token that is valid for at least the refresh margin.

        Signs in when there is no token and refreshes when the token expires
        within :data:`TOKEN_REFRESH_MARGIN`; otherwise makes no request.
        """
        token = self._token
        if token is not None and not token.expires_within(TOKEN_REFRESH_MARGIN, self._clock()):
            return token
        async with self._token_lock:
            # Another task may have renewed the token while we were waiting.
            token = self._token
            if token is None:
                return await self._sign_in()
            if token.expires_within(TOKEN_REFRESH_MARGIN, self._clock()):
                _LOGGER.debug("Token expiring soon (at %s), refreshing", token.expires_at)
                return await self._refresh()
            return token

    async def reauthenticate(self, stale: SessionToken | None) -> SessionToken:
        """Discard *stale* and sign in again.

        If another task has already replaced *stale* the current token is
        returned without a new sign-in.
        """
        async with self._token_lock:
            current = self._token
            if current is not None and current is not stale:
                return current
            self._token = None
            return await self._sign_in()

    async def _sign_in(self) -> SessionToken:
        identity = await self.ensure_registered()
        resp = await _http.request(
            "POST",
            self._base_url + AUTH_SIGNIN_PATH,
            headers={**APP_HEADERS, **signature_headers(identity)},
            body={"username": self._username, "password": self._password},
        )
        if resp.status != 200:
            raise AuthenticationError(f"Sign-in failed: {resp.status} - {resp.text}")
        token = self._store_token(resp)
        _LOGGER.info("Authenticated, token valid until %s", token.expires_at)
        return token

    async def _refresh(self) -> SessionToken:
        token = self._token
        identity = self._identity
        if token is None or identity is None:
            return await self._sign_in()
        resp = await _http.request(
            "POST",
            self._base_url + AUTH_REFRESH_PATH,
            headers={**APP_HEADERS, **signature_headers(identity)},
            body={"username": self._username, "refresh_token": token.refresh_token},
        )
        if resp.status != 200:
            _LOGGER.warning("Token refresh failed (%s), re-authenticating", resp.status)
            return await self._sign_in()
        token = self._store_token(resp)
        _LOGGER.debug("Token refreshed, valid until %s", token.expires_at)
        return token

    def _store_token(self, resp: _http.ApiResponse) -> SessionToken:
        body = resp.json()
        if not isinstance(body, dict):
            raise MalformedResponseError("Token response is not a JSON object.")
        access = body.get("accessToken")
        refresh = body.get("refreshToken")
        if not isinstance(access, str) or not isinstance(refresh, str):
            raise MalformedResponseError("Token response lacks accessToken/refreshToken.")
        token = SessionToken(access, refresh, self._clock() + TOKEN_VALIDITY)
        self._token = token
        return token
