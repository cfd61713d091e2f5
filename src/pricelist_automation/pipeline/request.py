"""Send the extraction prompt to a vision chat model and return its raw text."""

from __future__ import annotations

import threading
import time
from typing import Any, Optional

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AuthenticationError,
    OpenAI,
    PermissionDeniedError,
    RateLimitError,
)

from ..domain.errors import BackendError, BackendUnavailable, Cancelled, PriceListError
from ..domain.models import EncodedPayload
from ..logging import get_logger, preview
from .prompt import PROMPT_TEMPLATE, build_prompt

LOG = get_logger("pipeline-request")


class CancelToken:
    """Cancellation flag shared between the caller and one in-flight request."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("Analysis cancelled before a result was produced")


def build_openai_client(
    api_key: str,
    *,
    base_url: Optional[str] = None,
    timeout_seconds: float = 120.0,
) -> OpenAI:
    """Construct the production client; SDK retries are off (no automatic retry)."""
    http_client = httpx.Client(
        http2=True,
        timeout=httpx.Timeout(connect=10.0, read=timeout_seconds, write=30.0, pool=10.0),
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
    )
    return OpenAI(api_key=api_key, base_url=base_url, http_client=http_client, max_retries=0)


def _message_text(completion: Any) -> Optional[str]:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return None
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if isinstance(content, list):
        # Some OpenAI-compatible backends return content parts.
        parts = [p.get("text", "") if isinstance(p, dict) else getattr(p, "text", "") for p in content]
        content = "".join(p for p in parts if isinstance(p, str))
    return content if isinstance(content, str) else None


class ExtractionRequester:
    """Calls ``client.chat.completions.create`` once per request.

    ``client`` is any object exposing the OpenAI chat-completions surface, so
    tests and alternative backends can be injected.
    """

    def __init__(
        self,
        client: Any,
        *,
        model: str = "gpt-4o",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    def request(
        self,
        payload: EncodedPayload,
        prompt_template: str = PROMPT_TEMPLATE,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        prompt = build_prompt(payload, prompt_template)
        kwargs: dict = {"model": self.model, "messages": prompt.messages()}
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout

        approx_mb = len(payload.data) / (1024 * 1024)
        LOG.info("Calling chat completions model='%s' prompt=%s (~%.2f MiB image)", self.model, prompt.version, approx_mb)

        if cancel is not None:
            cancel.raise_if_cancelled()

        t0 = time.perf_counter()
        try:
            completion = self.client.chat.completions.create(**kwargs)
        except APIConnectionError as e:
            LOG.error("Network/timeout while calling the model: %s", e)
            raise BackendUnavailable(f"Connection to the model failed: {e}") from e
        except (AuthenticationError, PermissionDeniedError, RateLimitError) as e:
            LOG.error("Model API refused the request (%s): %s", e.status_code, e)
            raise BackendUnavailable(f"Model API refused the request ({e.status_code})") from e
        except APIStatusError as e:
            body = getattr(getattr(e, "response", None), "text", None)
            LOG.error("Model API returned %s. Body preview: %r", e.status_code, preview(body, 300))
            raise BackendError(f"Model API returned HTTP {e.status_code}") from e
        except APIError as e:
            LOG.error("Model API error: %s", e)
            raise BackendError(str(e)) from e
        except PriceListError:
            raise
        except Exception as e:
            LOG.error("Unexpected %s from chat client: %s", type(e).__name__, e)
            raise BackendError(f"Model client failed: {e}") from e

        if cancel is not None and cancel.cancelled:
            LOG.info("Request finished after cancellation; discarding reply")
            raise Cancelled("Analysis cancelled; the model reply was discarded")

        usage = getattr(completion, "usage", None)
        usage_dict = {k: getattr(usage, k, None) if usage else None for k in ("prompt_tokens", "completion_tokens", "total_tokens")}
        LOG.info(
            "Chat completion finished in %.2fs id=%s usage=%s",
            time.perf_counter() - t0, getattr(completion, "id", None), usage_dict,
        )

        text = _message_text(completion)
        if text is None or not text.strip():
            LOG.error("Model returned no message content")
            raise BackendError("The model returned an empty response")
        LOG.debug("Model reply (first 500 chars): %r", preview(text))
        return text
