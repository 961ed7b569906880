"""
Blocking HTTP helpers for talking to the script generator.

The session protocol calls these through ``asyncio.to_thread`` so polling
never blocks the event loop.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests

from recon.core.config import settings
from recon.core.errors import TransportError


NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@dataclass
class FetchResult:
    url: str
    status_code: int
    headers: dict[str, str]
    content: bytes

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def _merged_headers(extra: Optional[dict[str, str]]) -> dict[str, str]:
    merged = dict(NO_CACHE_HEADERS)
    if extra:
        merged.update(extra)
    return merged


def _to_result(resp: requests.Response) -> FetchResult:
    content = resp.content or b""
    if len(content) > settings.http_max_bytes:
        raise TransportError(f"Response too large (>{settings.http_max_bytes} bytes)")
    return FetchResult(
        url=str(resp.url),
        status_code=int(resp.status_code),
        headers={k: v for k, v in resp.headers.items()},
        content=content,
    )


def _request(method: str, url: str, *, max_retries: int, **kwargs: Any) -> FetchResult:
    """Send one request, retrying connection-level failures at 1s intervals."""
    for attempt in range(max_retries + 1):
        try:
            resp = requests.request(
                method,
                url,
                timeout=(settings.http_connect_timeout_s, settings.http_read_timeout_s),
                **kwargs,
            )
        except requests.RequestException as exc:
            if attempt < max_retries:
                time.sleep(1)
                continue
            raise TransportError(f"{method} {url} failed after {attempt + 1} attempts: {exc}") from exc
        return _to_result(resp)

    raise TransportError(f"{method} {url} was not attempted")


def get_bytes(
    url: str,
    headers: Optional[dict[str, str]] = None,
    params: Optional[dict[str, Any]] = None,
    max_retries: int = 0,
) -> FetchResult:
    return _request("GET", url, max_retries=max_retries, headers=_merged_headers(headers), params=params)


def post_json(
    url: str,
    body: dict[str, Any],
    headers: Optional[dict[str, str]] = None,
    max_retries: int = 0,
) -> FetchResult:
    merged = _merged_headers(headers)
    merged.setdefault("Content-Type", "application/json")
    return _request("POST", url, max_retries=max_retries, headers=merged, json=body)


def try_parse_json(content: bytes) -> Optional[Any]:
    try:
        return json.loads(content.decode("utf-8", errors="replace"))
    except ValueError:
        return None
