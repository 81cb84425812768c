"""
HTTP backend for a hosted generation endpoint.

Posts the prompt (and a base64 attachment, if any) to
``{api_url}/v1/generate`` and expects ``{"text": "..."}`` back.
Configured from the [ai] section of larder.toml or LARDER_AI_URL /
LARDER_AI_KEY.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

import httpx

from ..errors import BackendError
from .base import Attachment, get_registry

logger = logging.getLogger(__name__)

# Retry config for generate
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0  # seconds

DEFAULT_TIMEOUT = 60.0


class HttpBackend:
    """Generation via a hosted HTTP endpoint."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        *,
        model: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        api_url = api_url or os.environ.get("LARDER_AI_URL")
        if not api_url:
            raise ValueError("HTTP backend requires api_url (or LARDER_AI_URL)")
        self._api_url = api_url.rstrip("/")
        self._model = model
        api_key = api_key or os.environ.get("LARDER_AI_KEY")

        # Refuse non-HTTPS for remote APIs (bearer token would be sent in cleartext)
        if not self._api_url.startswith("https://"):
            from urllib.parse import urlparse
            host = urlparse(self._api_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                raise ValueError(
                    f"AI endpoint URL must use HTTPS (got {self._api_url}). "
                    "Use HTTPS to protect API credentials, or use localhost for local development."
                )

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.Client(
            base_url=self._api_url,
            headers=headers,
            timeout=timeout,
        )

    def generate(self, prompt: str, attachment: Optional[Attachment] = None) -> str:
        """POST /v1/generate -> text.

        Retries up to MAX_RETRIES times with exponential backoff on
        transient errors (5xx, timeouts, connection errors).
        """
        payload: dict = {"prompt": prompt}
        if self._model:
            payload["model"] = self._model
        if attachment is not None:
            payload["attachment"] = {
                "filename": attachment.filename,
                "content_type": attachment.media_type,
                "data": attachment.to_base64(),
            }

        last_error: Exception | None = None
        for attempt in range(MAX_RETRIES):
            try:
                resp = self._client.post("/v1/generate", json=payload)
                if resp.status_code == 429:
                    retry_after = min(float(resp.headers.get("Retry-After", "5")), 60.0)
                    logger.info("Rate limited, retrying after %.1fs", retry_after)
                    time.sleep(retry_after)
                    continue
                resp.raise_for_status()
                text = resp.json().get("text")
                if not isinstance(text, str) or not text:
                    raise BackendError("AI endpoint returned no text")
                return text
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    # Client error (4xx except 429): don't retry
                    raise BackendError(
                        f"Generation rejected: {e.response.status_code} {e.response.text}"
                    ) from e
                last_error = e
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e

            if attempt < MAX_RETRIES - 1:
                delay = RETRY_BACKOFF_BASE * (2 ** attempt)
                logger.info(
                    "Generate attempt %d failed, retrying in %.1fs: %s",
                    attempt + 1, delay, last_error,
                )
                time.sleep(delay)

        raise BackendError(
            f"Generation failed after {MAX_RETRIES} attempts: {last_error}"
        ) from last_error

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()


get_registry().register_backend("http", HttpBackend)
