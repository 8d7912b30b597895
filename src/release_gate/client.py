"""HTTP client for the build validation endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.release_gate.classifier import ResponseClassifier
from src.release_gate.models import GateRequest, GateResponse
from src.shared.constants import (
    BUILD_VALIDATION_PATH,
    DEFAULT_BASE_URL,
    GATE_TIMEOUT_S,
    PING_PATH,
    PING_TIMEOUT_S,
)
from src.shared.errors import ProtocolError, TransportError

logger = logging.getLogger(__name__)


def normalize_sub_products(value: Any) -> list[str]:
    """Materialise sub-products as a list.

    Accepts an already-structured list/tuple, a newline-separated blob
    (one sub-product per line, blanks dropped) or an empty value.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [line.strip() for line in str(value).splitlines() if line.strip()]


def resolve_endpoint(target_url: str | None, base_url: str | None) -> str:
    """Pick the validation URL: job override, then base URL, then default."""
    url = (target_url or "").strip() or (base_url or "").strip() or DEFAULT_BASE_URL
    url = url.rstrip("/")
    if not url.endswith(BUILD_VALIDATION_PATH):
        url += BUILD_VALIDATION_PATH
    return url


class GateClient:
    """Issues exactly one validation exchange per :meth:`poll` call.

    Retries are the state machine's business; every failure mode here
    surfaces as :class:`TransportError` (or its subclass
    :class:`ProtocolError` for unparsable bodies).
    """

    def __init__(
        self,
        endpoint: str,
        token: str,
        classifier: ResponseClassifier | None = None,
        timeout: float = GATE_TIMEOUT_S,
    ) -> None:
        self.endpoint = endpoint
        self._token = token
        self._classifier = classifier or ResponseClassifier()
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._token}",
            "Accept-Charset": "UTF-8",
        }

    async def poll(self, request: GateRequest) -> GateResponse:
        """POST *request* and classify the response.

        Raises:
            TransportError: Network failure or non-2xx status.
            ProtocolError: Body is not a JSON object.
        """
        logger.debug(
            "Polling %s (attempt %d/%d)",
            self.endpoint,
            request.attempt_index,
            request.attempt_ceiling,
        )
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self.endpoint,
                    json=request.to_payload(),
                    headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Request to {self.endpoint} failed: {exc}"
            ) from exc

        if not 200 <= resp.status_code < 300:
            raise TransportError(
                f"Server returned error for URL: {self.endpoint}",
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            return self._classifier.classify(resp.text)
        except ProtocolError as exc:
            raise ProtocolError(
                f"Unparsable response from {self.endpoint}",
                status_code=resp.status_code,
                body=resp.text,
            ) from exc


async def ping(base_url: str | None, timeout: float = PING_TIMEOUT_S) -> bool:
    """Connectivity check against ``GET /client/ping`` (200 = reachable)."""
    url = ((base_url or "").strip() or DEFAULT_BASE_URL).rstrip("/") + PING_PATH
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(url)
    except httpx.HTTPError as exc:
        logger.warning("Ping to %s failed: %s", url, exc)
        return False
    if resp.status_code != 200:
        logger.warning("Ping to %s returned HTTP %d", url, resp.status_code)
        return False
    return True
