"""
HTTP client shared by all provider adapters.

Wraps a requests.Session per adapter with:
    - An explicit timeout on every call (never the library default of "forever")
    - Exponential backoff + jitter for 429/5xx/network errors on retry-safe calls
    - Mapping of HTTP outcomes into the fulfillment error taxonomy:
        network / timeout / 429 / 5xx  -> ProviderUnavailable
        other 4xx                      -> VendorRejected (vendor detail kept verbatim)
        2xx with a non-JSON body       -> ParseError

Order creation calls pass retry=False: a POST that timed out may still have
been accepted by the vendor, so re-sending it at this layer could double-submit.
"""

from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Callable, Dict, Optional

import requests

from core.exceptions import ParseError, ProviderUnavailable, VendorRejected


USER_AGENT = "print-fulfillment/1.0"


def _body_preview(resp: requests.Response, limit: int = 800) -> str:
    """Readable, bounded excerpt of a response body for errors and logs."""
    try:
        if "application/json" in (resp.headers.get("Content-Type") or "").lower():
            try:
                text = json.dumps(resp.json(), ensure_ascii=False)
            except ValueError:
                text = resp.text or ""
        else:
            text = resp.text or ""
    except Exception:
        return "<unavailable>"
    text = text.replace("\r", " ").replace("\n", " ").strip()
    if len(text) > limit:
        return text[:limit].rstrip() + "..."
    return text


def _vendor_detail(resp: requests.Response) -> str:
    """Pull the vendor's own error message out of a 4xx response."""
    try:
        data = resp.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        for key in ("message", "detail", "error", "errors", "statusText", "failures"):
            value = data.get(key)
            if value:
                if isinstance(value, (list, dict)):
                    return json.dumps(value, ensure_ascii=False)
                return str(value)
    preview = _body_preview(resp)
    return preview or f"HTTP {resp.status_code}"


class VendorHttpClient:
    """
    JSON-over-HTTP client for one print provider.

    Each adapter owns exactly one instance. The underlying requests.Session is
    safe to share between request threads for the simple calls made here.

    Attributes:
        provider_id: Provider the client talks to (used in errors and logs)
        base_url: API root, without trailing slash
        timeout_seconds: Default per-call timeout
        max_retries: Extra attempts for retry-safe calls
    """

    RETRYABLE_STATUSES = (429, 500, 502, 503, 504)

    def __init__(
        self,
        provider_id: str,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout_seconds: float = 15.0,
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider_id = provider_id
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(0, max_retries)
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        })
        if headers:
            self._session.headers.update(headers)
        self._logger = logger or logging.getLogger(f"print_fulfillment.http.{provider_id}")
        self._sleep = sleep

    def set_header(self, name: str, value: str) -> None:
        """Set a default header (e.g. a refreshed bearer token)."""
        self._session.headers[name] = value

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _backoff(self, attempt: int, retry_after: Optional[str]) -> float:
        if retry_after and retry_after.isdigit():
            return min(30.0, float(retry_after))
        return min(30.0, 0.5 * (2 ** (attempt - 1))) + random.random() * 0.25

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        auth: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        retry: bool = True,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Perform a request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to base_url, or an absolute URL
            json_body: JSON payload
            params: Query parameters
            data: Form payload (used for OAuth token requests)
            auth: requests auth tuple/object
            headers: Extra headers for this call only
            retry: Whether 429/5xx/network failures may be retried
            timeout: Override the default per-call timeout

        Returns:
            Decoded JSON object ({} for empty bodies)

        Raises:
            ProviderUnavailable: Network failure, timeout, 429/5xx after retries
            VendorRejected: Any other 4xx response
            ParseError: 2xx response whose body is not JSON
        """
        url = self._url(path)
        call_timeout = timeout if timeout is not None else self.timeout_seconds
        attempts = self.max_retries + 1 if retry else 1

        for attempt in range(1, attempts + 1):
            self._logger.debug(
                f"request | method={method} | url={url} | attempt={attempt}/{attempts}"
            )
            try:
                resp = self._session.request(
                    method,
                    url,
                    json=json_body,
                    params=params,
                    data=data,
                    auth=auth,
                    headers=headers,
                    timeout=call_timeout,
                )
            except (requests.Timeout, requests.ConnectionError) as e:
                if attempt < attempts:
                    delay = self._backoff(attempt, None)
                    self._logger.warning(
                        f"retrying after network error | backoff={delay:.2f}s | url={url} | error={e}"
                    )
                    self._sleep(delay)
                    continue
                raise ProviderUnavailable(self.provider_id, f"{type(e).__name__}: {e}") from e
            except requests.RequestException as e:
                raise ProviderUnavailable(self.provider_id, str(e)) from e

            if resp.status_code in self.RETRYABLE_STATUSES:
                if attempt < attempts:
                    delay = self._backoff(attempt, resp.headers.get("Retry-After"))
                    self._logger.warning(
                        f"retrying | status={resp.status_code} | backoff={delay:.2f}s | url={url}"
                    )
                    self._sleep(delay)
                    continue
                self._logger.error(
                    f"http error | status={resp.status_code} | url={url} | body={_body_preview(resp)}"
                )
                raise ProviderUnavailable(
                    self.provider_id,
                    f"HTTP {resp.status_code}",
                    status_code=resp.status_code,
                )

            if resp.status_code >= 400:
                detail = _vendor_detail(resp)
                self._logger.error(
                    f"vendor rejected | status={resp.status_code} | url={url} | detail={detail}"
                )
                raise VendorRejected(self.provider_id, detail, status_code=resp.status_code)

            if not resp.content:
                return {}
            try:
                body = resp.json()
            except ValueError as e:
                # The vendor accepted the request; only its answer is unreadable
                self._logger.error(
                    f"invalid JSON | status={resp.status_code} | url={url} | body={_body_preview(resp)}"
                )
                raise ParseError(
                    self.provider_id,
                    f"invalid JSON response: {_body_preview(resp, 200)}",
                ) from e
            return body if isinstance(body, dict) else {"data": body}

        # Loop always returns or raises; kept for type checkers
        raise ProviderUnavailable(self.provider_id, "request attempts exhausted")

    def get(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("DELETE", path, **kwargs)

    def close(self) -> None:
        self._session.close()
