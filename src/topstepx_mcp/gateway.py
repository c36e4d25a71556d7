"""
HTTP Request Gateway
====================
Sends authenticated calls to the REST API, normalizes the two response
shapes it uses, and re-authenticates once when a call comes back 401.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .errors import RequestError
from .session import DEFAULT_HEADERS, SessionManager

logger = logging.getLogger("topstepx-mcp.gateway")


def unwrap_envelope(payload: Any) -> Any:
    """
    Normalize a response body.

    Some endpoints answer ``{success, data?, errorMessage?}``, others return
    the payload directly.

    Returns:
        ``data`` when the envelope succeeded and carries it, the envelope
        itself when it succeeded without ``data``, or the raw body when
        there is no ``success`` field

    Raises:
        RequestError: The envelope reports ``success: false``
    """
    if not isinstance(payload, dict) or "success" not in payload:
        return payload
    if not payload["success"]:
        raise RequestError(
            payload.get("errorMessage") or "Request failed",
            error_code=payload.get("errorCode"),
        )
    if "data" in payload:
        return payload["data"]
    return payload


class Gateway:
    """Authenticated request channel to the TopstepX REST API."""

    def __init__(self, session: SessionManager,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.session = session
        self._client = httpx.AsyncClient(
            base_url=session.base_url,
            timeout=session.settings.request_timeout,
            headers=DEFAULT_HEADERS,
            transport=transport,
        )

    async def request(self, method: str, path: str,
                      body: Optional[Dict[str, Any]] = None) -> Any:
        """
        Issue ``method path`` with an optional JSON body.

        A 401 invalidates the session, forces one new login and retries the
        call once. A second 401, any other error status and transport
        failures raise immediately.

        Raises:
            AuthenticationError: Login failed before or during the retry
            RequestError: Remote or transport failure
        """
        response = await self._send(method, path, body)

        if response.status_code == 401:
            logger.info(f"{method} {path} returned 401, re-authenticating")
            self.session.invalidate()
            response = await self._send(method, path, body)

        return self._handle_response(method, path, response)

    async def _send(self, method: str, path: str,
                    body: Optional[Dict[str, Any]]) -> httpx.Response:
        session = await self.session.ensure_valid()
        try:
            return await self._client.request(
                method,
                path,
                json=body,
                headers={"Authorization": session.authorization},
            )
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise RequestError(f"{method} {path} failed: {e}") from e

    def _handle_response(self, method: str, path: str, response: httpx.Response) -> Any:
        if response.is_error:
            detail = response.text[:500]
            logger.error(f"{method} {path} returned HTTP {response.status_code}: {detail}")
            raise RequestError(
                f"{method} {path} returned HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        if not response.content:
            return None

        try:
            payload = response.json()
        except ValueError as e:
            raise RequestError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            ) from e

        logger.debug(f"{method} {path} response: {payload}")
        return unwrap_envelope(payload)

    async def aclose(self) -> None:
        await self._client.aclose()
