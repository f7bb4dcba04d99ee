"""Anthropic Messages API client used as the repair service.

Wraps ``POST /v1/messages`` with:

- **Error mapping**: transport and HTTP failures are raised as subclasses of
  :class:`RepairServiceError` so the worker treats every one of them as an
  attempt failure.
- **Latency tracking**: wall-clock time is measured per request.
- **Liveness probe**: :meth:`RepairClient.is_available` never raises.

The client is async (``httpx.AsyncClient``) because the worker pool runs
several repairs concurrently on one event loop.
"""
from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from question_validator.core.settings import Settings

ANTHROPIC_VERSION = "2023-06-01"

# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class RepairServiceError(RuntimeError):
    """Base class for every repair-service failure."""


class RepairConnectionError(RepairServiceError):
    """Raised when the repair service is unreachable."""


class RepairTimeoutError(RepairServiceError):
    """Raised when a request exceeds the configured timeout."""


class RepairAuthError(RepairServiceError):
    """Raised on 401/403 from the repair service."""


class RepairResponseError(RepairServiceError):
    """Raised on any other HTTP error or an unusable response body."""


# ---------------------------------------------------------------------------
# RepairClient
# ---------------------------------------------------------------------------


class RepairClient:
    """Async client for the Anthropic Messages API.

    Parameters
    ----------
    api_key:
        Sent as the ``x-api-key`` header.
    model:
        Model name (e.g. ``"claude-3-5-sonnet-20241022"``).
    base_url:
        API root, without the ``/v1`` suffix.
    max_tokens, temperature:
        Generation parameters sent with every request.
    timeout_s:
        Request timeout in seconds.
    transport:
        Optional ``httpx`` transport; tests pass an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.anthropic.com",
        max_tokens: int = 4000,
        temperature: float = 0.1,
        timeout_s: float = 120.0,
        system: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_s = timeout_s
        self.system = system
        self.log = logger or logging.getLogger(__name__)
        self._last_latency_ms: int | None = None
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_s,
            transport=transport,
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        system: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> RepairClient:
        return cls(
            api_key=settings.ai_api_key or "",
            model=settings.ai_model,
            base_url=settings.ai_base_url,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
            timeout_s=settings.ai_timeout_s,
            system=system,
            transport=transport,
            logger=logger,
        )

    # -- public API ---------------------------------------------------------

    async def complete(self, prompt: str) -> str:
        """Send one user message and return the concatenated text reply.

        Raises
        ------
        RepairConnectionError
            If the service is unreachable.
        RepairTimeoutError
            If the request exceeds the configured timeout.
        RepairAuthError
            If the API key is rejected.
        RepairResponseError
            On any other HTTP error or a reply without text content.
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.system is not None:
            payload["system"] = self.system

        start = time.monotonic()
        try:
            response = await self._http.post("/v1/messages", json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise RepairTimeoutError(
                f"Repair request timed out after {self.timeout_s}s"
            ) from exc
        except httpx.ConnectError as exc:
            raise RepairConnectionError(
                f"Cannot connect to repair service at {self.base_url}"
            ) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise RepairAuthError(f"Repair service rejected credentials (HTTP {status})") from exc
            raise RepairResponseError(
                f"Repair service HTTP error {status}: {_error_message(exc.response)}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RepairConnectionError(f"Repair service HTTP error: {exc}") from exc
        finally:
            self._last_latency_ms = int((time.monotonic() - start) * 1000)

        try:
            data = response.json()
        except ValueError as exc:
            raise RepairResponseError("Repair service returned a non-JSON body") from exc

        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text:
            raise RepairResponseError("No text content in repair response")

        self.log.debug(
            "Repair response received (%d chars, %d ms)", len(text), self._last_latency_ms
        )
        return text

    async def is_available(self) -> bool:
        """Check whether the repair service is reachable with these credentials.

        Returns ``False`` on any failure.  Never raises an exception.
        """
        try:
            response = await self._http.get("/v1/models", timeout=10)
            return response.status_code == 200
        except Exception:
            return False

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> RepairClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def last_latency_ms(self) -> int | None:
        """Wall-clock latency of the most recent ``complete()`` call (ms)."""
        return self._last_latency_ms


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text[:200]
