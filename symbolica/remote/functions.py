"""
symbolica.remote.functions — Serverless Function Client
========================================================

Invokes serverless functions (AI analysis, image generation, …) as opaque
JSON request/response calls over HTTP.  Each call is bounded by a timeout;
failures are mapped onto the :mod:`symbolica.errors` taxonomy so the cache
layer can wrap a function exactly like any other query or mutation.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from symbolica.constants import DEFAULT_REQUEST_TIMEOUT
from symbolica.errors import (
    AuthorizationError,
    BusinessError,
    RemoteTimeoutError,
    TransportError,
)

logger = logging.getLogger(__name__)

FUNCTIONS_PATH = "/functions/v1"


class FunctionsClient:
    """Thin async wrapper around :class:`httpx.AsyncClient`.

    Usage::

        functions = FunctionsClient("https://project.functions.example")
        analysis = await functions.invoke("analyze-symbol", {"symbol_id": sid})
        await functions.aclose()
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        api_key = api_key if api_key is not None else os.getenv("FUNCTIONS_API_KEY", "")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def invoke(self, name: str, payload: dict[str, Any] | None = None) -> Any:
        """POST *payload* to function *name* and return the decoded JSON body.

        Raises
        ------
        RemoteTimeoutError
            The call exceeded :attr:`timeout`.
        TransportError
            The function host could not be reached, or answered 5xx.
        AuthorizationError
            The function answered 401/403.
        BusinessError
            Any other non-2xx answer; the function's ``error`` field is kept
            as the message.
        """
        url = f"{FUNCTIONS_PATH}/{name}"
        try:
            resp = await self._client.post(url, json=payload or {})
        except httpx.TimeoutException:
            raise RemoteTimeoutError(f"function {name}", self.timeout) from None
        except httpx.TransportError as exc:
            logger.error("Function %s unreachable: %s", name, exc)
            raise TransportError(f"function {name}: unreachable") from exc

        if resp.status_code in (401, 403):
            raise AuthorizationError(
                "Authentication required" if resp.status_code == 401 else "Access denied"
            )
        if resp.status_code >= 500:
            logger.error("Function %s failed with %d", name, resp.status_code)
            raise TransportError(f"function {name}: HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise BusinessError(
                _error_message(resp) or f"function {name} rejected the request",
                details={"status": resp.status_code},
            )
        if not resp.content:
            return None
        return resp.json()

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_message(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or None
    if isinstance(body, dict):
        return body.get("error") or body.get("message")
    return None
