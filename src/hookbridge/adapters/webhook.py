"""HTTP webhook dispatch adapter.

Posts a WebhookRequest to the automation webhook and parses its response
contract. The whole call runs under ``asyncio.wait_for`` so a slow webhook
is cancelled, not abandoned, once the timeout expires.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import httpx

from hookbridge.core.config import ReplyDestination
from hookbridge.core.errors import WebhookError
from hookbridge.core.models import WebhookRequest, WebhookResult

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 15000
SECRET_HEADER = "x-bridge-secret"
ERROR_BODY_CHARS = 800


def parse_webhook_response(body: bytes, status_code: int) -> WebhookResult:
    """Parse the response body leniently.

    A body that is not a JSON object degrades to an empty result (no reply,
    no skip) instead of failing the dispatch.
    """

    try:
        payload: Any = json.loads(body) if body else {}
    except ValueError:
        LOGGER.debug("Webhook returned a non-JSON body (status %s); treating as empty", status_code)
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    reply_text = payload.get("replyText")
    send_to = payload.get("sendTo")
    return WebhookResult(
        status_code=status_code,
        reply_text=reply_text if isinstance(reply_text, str) else None,
        send_to=send_to if send_to in {dest.value for dest in ReplyDestination} else None,
        skip_reply=bool(payload.get("skipReply")),
    )


class WebhookDispatcher:
    """Dispatch requests to one webhook URL with a hard timeout."""

    def __init__(
        self,
        url: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        shared_secret: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = url
        self._timeout_ms = timeout_ms or DEFAULT_TIMEOUT_MS
        self._shared_secret = shared_secret or None
        self._client = client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self._shared_secret:
            headers[SECRET_HEADER] = self._shared_secret
        return headers

    async def _post(self, request: WebhookRequest) -> httpx.Response:
        return await self._client.post(
            self._url,
            content=json.dumps(request.to_payload()),
            headers=self._headers(),
            timeout=self._timeout_ms / 1000,
        )

    async def dispatch(self, request: WebhookRequest) -> WebhookResult:
        try:
            response = await asyncio.wait_for(self._post(request), timeout=self._timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise WebhookError(None, f"webhook timed out after {self._timeout_ms} ms") from exc
        except httpx.TimeoutException as exc:
            raise WebhookError(None, f"webhook timed out after {self._timeout_ms} ms") from exc
        except httpx.HTTPError as exc:
            raise WebhookError(None, f"webhook request failed: {exc}") from exc

        if not response.is_success:
            detail = f"webhook responded {response.status_code}: {response.text}"
            raise WebhookError(response.status_code, detail[:ERROR_BODY_CHARS])

        return parse_webhook_response(response.content, response.status_code)
