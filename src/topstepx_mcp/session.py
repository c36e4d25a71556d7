"""
Credential/Session Manager
==========================
Owns the bearer token and its expiry. Every outbound call goes through
``ensure_valid()``; a detected 401 goes through ``invalidate()``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx

from .config import TOKEN_LIFETIME_HOURS, Settings
from .errors import AuthenticationError

logger = logging.getLogger("topstepx-mcp.session")

LOGIN_PATH = "/Auth/loginKey"

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "accept": "text/plain",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def mask_secret(value: str, visible: int = 4) -> str:
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}..."


@dataclass(frozen=True)
class Session:
    """An issued bearer token and the local expiry assumed for it."""
    token: str
    expiry: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expiry

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"


class SessionManager:
    """
    Logs in with user name + API key and keeps the resulting session.

    The token lifetime is assumed to be 24 hours from issuance; the remote
    lifetime is not consulted.
    """

    def __init__(self, settings: Settings,
                 clock: Callable[[], datetime] = utc_now,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._clock = clock
        self._session: Optional[Session] = None
        self._client = httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=settings.login_timeout,
            headers=DEFAULT_HEADERS,
            transport=transport,
        )
        self.login_count = 0

    @property
    def base_url(self) -> str:
        return self.settings.api_url

    @property
    def session(self) -> Optional[Session]:
        return self._session

    async def ensure_valid(self) -> Session:
        """
        Return a usable session, logging in first when there is none or it expired.

        Raises:
            AuthenticationError: Credentials missing or login rejected
        """
        if not self.settings.has_credentials:
            raise AuthenticationError(
                "TOPSTEPX_USERNAME/PROJECTX_USERNAME and TOPSTEPX_API_KEY/PROJECTX_API_KEY "
                "must be set in environment variables"
            )

        session = self._session
        if session is None or session.is_expired(self._clock()):
            if session is not None:
                logger.info("Session expired, logging in again")
            session = await self._login()
        return session

    def invalidate(self) -> None:
        """Drop the current session so the next ``ensure_valid()`` logs in."""
        if self._session is not None:
            logger.info("Invalidating current session")
        self._session = None

    async def _login(self) -> Session:
        username = self.settings.username
        api_key = self.settings.api_key
        logger.info(
            f"Authenticating with TopstepX API at {self.base_url} "
            f"(user: {username}, key: {mask_secret(api_key)})"
        )

        try:
            response = await self._client.post(
                LOGIN_PATH,
                json={"userName": username, "apiKey": api_key},
            )
        except httpx.HTTPError as e:
            logger.error(f"Login request failed: {e}")
            raise AuthenticationError(f"Login request failed: {e}") from e

        data = self._parse_body(response)
        message = data.get("errorMessage") if isinstance(data, dict) else None

        if response.is_error:
            logger.error(f"Authentication failed with HTTP {response.status_code}: {message}")
            raise AuthenticationError(
                message or f"Authentication failed (HTTP {response.status_code})"
            )

        if not isinstance(data, dict) or not data.get("success") or not data.get("token"):
            logger.error(f"Authentication rejected: {message}")
            raise AuthenticationError(message or "Authentication failed")

        self._session = Session(
            token=data["token"],
            expiry=self._clock() + timedelta(hours=TOKEN_LIFETIME_HOURS),
        )
        self.login_count += 1
        logger.info("Successfully authenticated with TopstepX API")
        return self._session

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    async def aclose(self) -> None:
        await self._client.aclose()
