"""Blocking JSON-over-HTTP POST wrapped for asyncio, with retries."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from loguru import logger as default_logger

_RETRYABLE_MARKERS = ("timeout", "timed out", "httperror 5", "urlerror")
# URLError is raised while sending; a read timeout may follow an accepted request
CONNECT_ONLY_MARKERS = ("urlerror",)


@dataclass(slots=True)
class HttpResponse:
    status: int
    body: str


class JsonTransport:
    """POSTs JSON payloads; transient failures are retried with exponential backoff."""

    def __init__(
        self,
        timeout_sec: float = 10,
        retries: int = 3,
        backoff_sec: float = 0.5,
        logger: Any | None = None,
        retry_markers: tuple[str, ...] = _RETRYABLE_MARKERS,
    ) -> None:
        self.timeout_sec = timeout_sec
        self.retries = max(retries, 1)
        self.backoff_sec = backoff_sec
        self.retry_markers = retry_markers
        self.logger = logger or default_logger

    async def post(self, url: str, payload: dict[str, Any]) -> HttpResponse:
        delay = self.backoff_sec
        for attempt in range(1, self.retries + 1):
            try:
                return await asyncio.to_thread(self._post_sync, url, payload)
            except RuntimeError as exc:
                message = str(exc).lower()
                is_retryable = any(marker in message for marker in self.retry_markers)
                if not is_retryable or attempt >= self.retries:
                    raise
                self.logger.warning("POST retry {}/{} url={} err={}", attempt, self.retries, url, exc)
                await asyncio.sleep(delay)
                delay *= 2
        raise RuntimeError(f"POST {url} failed")

    def _post_sync(self, url: str, payload: dict[str, Any]) -> HttpResponse:
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        req = Request(url=url, data=data, method="POST", headers={"Content-Type": "application/json"})

        try:
            with urlopen(req, timeout=self.timeout_sec) as resp:
                return HttpResponse(status=resp.status, body=resp.read().decode("utf-8", errors="ignore"))
        except HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="ignore")
            raise RuntimeError(f"HTTPError {exc.code}: {raw}") from exc
        except URLError as exc:
            raise RuntimeError(f"URLError: {exc}") from exc
        except TimeoutError as exc:
            raise RuntimeError(f"timeout: {exc}") from exc
