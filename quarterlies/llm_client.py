import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

import requests

from .errors import NetworkFailure, NotConfigured, ParseFailure


logger = logging.getLogger(__name__)

SOURCE_NAME = "perplexity"
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class LLMCompletion:
    text: str
    model: str = ""
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def total_tokens(self) -> Optional[int]:
        return self.usage.get("total_tokens")


class LLMClient:
    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str,
        base_url: str,
        timeout: int = 90,
        max_retries: int = 2,
        post_fn: Optional[Callable[..., Any]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = _normalize_base_url(base_url)
        self.timeout = timeout
        self.max_retries = max_retries
        self._post = post_fn or requests.post
        self._sleep = sleep_fn or time.sleep

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.0,
        max_tokens: int = 4000,
    ) -> LLMCompletion:
        provider = self.provider.lower().strip()
        if provider != "perplexity":
            raise ValueError(f"Unsupported provider: {self.provider}")
        if not self.api_key:
            raise NotConfigured("LLM API key is not configured", source=SOURCE_NAME)
        return self._chat_completion("/chat/completions", messages, temperature, max_tokens)

    def _chat_completion(
        self,
        endpoint_path: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> LLMCompletion:
        url = f"{self.base_url}{endpoint_path}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        logger.info("Calling %s with model %s", SOURCE_NAME, self.model)
        data = self._post_with_retry(url, headers, payload)
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            content = ""
        usage = data.get("usage") or {}
        logger.info("Completion received, tokens used: %s", usage.get("total_tokens", "unknown"))
        return LLMCompletion(text=content, model=str(data.get("model", self.model)), usage=dict(usage))

    def _post_with_retry(self, url: str, headers: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        last_err: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = self._post(url, headers=headers, json=payload, timeout=self.timeout)
                resp.raise_for_status()
                return _response_json(resp)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                last_err = exc
            except requests.exceptions.HTTPError as exc:
                status = getattr(exc.response, "status_code", None)
                if status not in RETRYABLE_STATUS:
                    raise NetworkFailure(f"LLM API error (HTTP {status}): {exc}", source=SOURCE_NAME)
                last_err = exc
            if attempt < self.max_retries:
                logger.warning("LLM request attempt %d failed: %s", attempt + 1, last_err)
                self._sleep(min(2 ** attempt, 4))
        raise NetworkFailure(f"LLM request failed after {self.max_retries + 1} attempts: {last_err}", source=SOURCE_NAME)


def _normalize_base_url(base_url: str) -> str:
    """Accept root URL, /v1 URL, or full chat completions endpoint and normalize."""
    raw = (base_url or "").strip()
    if not raw:
        return ""

    parsed = urlparse(raw)
    if not parsed.scheme or not parsed.netloc:
        return raw.rstrip("/")

    path = parsed.path.rstrip("/")
    lowered = path.lower()
    chat_suffix = "/chat/completions"
    v1_suffix = "/v1"

    if lowered.endswith(chat_suffix):
        path = path[: -len(chat_suffix)]
        lowered = path.lower()
    if lowered.endswith(v1_suffix):
        path = path[: -len(v1_suffix)]

    normalized = parsed._replace(path=path, params="", query="", fragment="")
    return urlunparse(normalized).rstrip("/")


def _response_json(resp: Any) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise ParseFailure(f"LLM API returned a non-JSON body: {exc}", source=SOURCE_NAME) from exc
    if not isinstance(data, dict):
        raise ParseFailure(f"LLM API returned {type(data).__name__}, expected an object", source=SOURCE_NAME)
    return data
