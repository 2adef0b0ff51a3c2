"""
http_utils.py — HTTP transport for ags-export

Design:
- urllib3-only core (no requests)
- Retries with backoff on idempotent GETs; respects Retry-After
- Clear logging; transport failures return None and the caller decides
- Safe JSON parsing with size and depth limits
- fetch_json() runs the blocking request off the event loop

Config knobs come from config.HttpSettings.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import urlencode

import urllib3
from urllib3 import PoolManager
from urllib3.util.retry import Retry
from urllib3.util.timeout import Timeout

from .config import HttpSettings

# --------------------------------------------------------------------------------------
# Constants / defaults
# --------------------------------------------------------------------------------------

MAX_RESPONSE_SIZE_MB = 100            # in-memory response cap
MAX_JSON_DEPTH = 100
DEFAULT_ALLOWED_METHODS = frozenset({"GET", "HEAD"})
DEFAULT_STATUS_FORCELIST = (429, 500, 502, 503, 504)

BytesLike = Union[str, bytes, bytearray, memoryview]

log = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------
# Normalizers and small helpers
# --------------------------------------------------------------------------------------

def _to_text(value: Optional[BytesLike]) -> Optional[str]:
    """Normalize str/bytes/bytearray/memoryview to str, or None."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    raw = value.tobytes() if isinstance(value, memoryview) else bytes(value)
    return raw.decode("utf-8", errors="replace")

def _json_depth(obj: Any, depth: int = 0, max_depth: int = MAX_JSON_DEPTH) -> int:
    """Return observed JSON depth; stop early if above max_depth."""
    if depth > max_depth:
        return depth
    if isinstance(obj, dict):
        if not obj:
            return depth + 1
        return max(_json_depth(v, depth + 1, max_depth) for v in obj.values())
    if isinstance(obj, list):
        if not obj:
            return depth + 1
        return max(_json_depth(v, depth + 1, max_depth) for v in obj)
    return depth

def _bytes_too_large(data: bytes, limit_mb: int) -> bool:
    return len(data) > limit_mb * 1024 * 1024

def build_url(url: str, params: Optional[Dict[str, Any]]) -> str:
    """Append encoded params to url, respecting an existing query string."""
    if not params:
        return url
    qs = urlencode(params, doseq=True)
    return f"{url}&{qs}" if "?" in url else f"{url}?{qs}"

# --------------------------------------------------------------------------------------
# Response container
# --------------------------------------------------------------------------------------

@dataclass
class SimpleResponse:
    status_code: int
    headers: Dict[str, str]
    content: bytes
    url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

# --------------------------------------------------------------------------------------
# Core client
# --------------------------------------------------------------------------------------

class HttpClient:
    """
    Thin wrapper around urllib3.PoolManager with sensible defaults.

    - Retries: idempotent methods with backoff; respects Retry-After
    - Timeouts: bounded via urllib3.Timeout
    - Size caps: guard rail for in-memory responses
    """

    def __init__(self, settings: Optional[HttpSettings] = None, headers: Optional[Dict[str, str]] = None) -> None:
        settings = settings or HttpSettings()

        retry = Retry(
            total=settings.total_retries,
            connect=settings.total_retries,
            read=settings.total_retries,
            backoff_factor=settings.backoff_factor,
            status_forcelist=DEFAULT_STATUS_FORCELIST,
            allowed_methods=DEFAULT_ALLOWED_METHODS,
            raise_on_status=False,
            respect_retry_after_header=True
        )

        self._timeout = Timeout(connect=settings.connect_timeout, read=settings.read_timeout)
        self._http: PoolManager = urllib3.PoolManager(
            num_pools=settings.num_pools,
            retries=retry,
            timeout=self._timeout
        )

        self._default_headers = {
            "User-Agent": "ags-export/1.0 (feature-service-export)",
            "Accept": "application/json, application/geo+json, */*",
            "Accept-Encoding": "gzip, deflate"
        }
        if headers:
            self._default_headers.update(headers)

    def get(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        max_response_mb: int = MAX_RESPONSE_SIZE_MB
    ) -> Optional[SimpleResponse]:
        """GET url; None on transport failure, oversize body or non-2xx status."""
        full_url = build_url(url, params)
        try:
            log.debug("GET %s", full_url)
            r = self._http.request("GET", full_url, headers=dict(self._default_headers), preload_content=False)
            try:
                content = r.read()
                status = int(r.status or 0)
            finally:
                r.release_conn()

            if _bytes_too_large(content, max_response_mb):
                log.warning("Response too large: %s bytes (> %s MB)", len(content), max_response_mb)
                return None

            response = SimpleResponse(
                status_code=status,
                headers={str(k).lower(): str(v) for k, v in r.headers.items()},
                content=content,
                url=full_url
            )
            if not response.ok:
                log.error("HTTP %s for %s", status, full_url)
                return None
            return response

        except urllib3.exceptions.MaxRetryError as e:
            log.error("HTTP retries exhausted for %s: %s", url, e)
            return None
        except urllib3.exceptions.HTTPError as e:
            log.error("HTTP error for %s: %s", url, e)
            return None

    def get_json(self, url: str, *, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        resp = self.get(url, params=params)
        if not resp:
            return None
        return safe_json_parse(resp.content)

    async def fetch_json(self, url: str, *, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """Async form of get_json; the blocking request runs in a worker thread."""
        return await asyncio.to_thread(self.get_json, url, params=params)

    def close(self) -> None:
        self._http.clear()

# --------------------------------------------------------------------------------------
# Safe parsers (module-level)
# --------------------------------------------------------------------------------------

def safe_json_parse(content: BytesLike, *, max_size_mb: int = MAX_RESPONSE_SIZE_MB, max_depth: int = MAX_JSON_DEPTH) -> Optional[Any]:
    """Safely parse JSON with size and depth limits."""
    text = _to_text(content)
    if text is None:
        log.warning("[JSON] Content is None")
        return None

    if not text.strip():
        log.warning("[JSON] Content is empty or whitespace-only")
        return None

    if len(text) > max_size_mb * 1024 * 1024:
        log.warning("[JSON] Content too large: %s bytes", len(text))
        return None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        log.error("[JSON] Parse error: %s", e)
        return None

    if _json_depth(data, 0, max_depth) > max_depth:
        log.warning("[JSON] Exceeds maximum nesting depth of %s", max_depth)
        return None

    return data
