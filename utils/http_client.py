"""HTTP client for webhook actions: retries, backoff, optional rate limiting."""
import time
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
import requests

logger = logging.getLogger("opsrules.http")


class APIError(Exception):
    """HTTP request error with status code and response body."""
    def __init__(self, message, status_code=None, response_body=None, url=None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.url = url


class _Retry(Exception):
    def __init__(self, error, wait=None):
        super().__init__(str(error))
        self.error = error
        self.wait = wait


def _retry_after(value):
    """Seconds to wait from a Retry-After header (delay or HTTP date), or None."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable Retry-After {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


class HTTPClient:
    """Session-backed client. 2xx bodies are decoded as JSON when possible."""

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(self, base_url="", rate_limiter=None, timeout=10, max_retries=2, backoff_cap=30,
                 headers=None, session=None):
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_cap = backoff_cap
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "OpsRules/1.0"})
        if headers:
            self.session.headers.update(headers)

    def get(self, path="", params=None):
        return self.request("GET", path, params=params)

    def post(self, path="", json=None, headers=None):
        return self.request("POST", path, json=json, headers=headers)

    def _url(self, path):
        if path.startswith(("http://", "https://")):
            return path
        if not self.base_url:
            raise APIError(f"Relative URL {path!r} with no base URL configured")
        return f"{self.base_url}/{path.lstrip('/')}" if path else self.base_url

    def _backoff(self, attempt):
        return min(2 ** attempt, self.backoff_cap)

    def _handle(self, resp, url):
        """Decode a response, or raise _Retry / APIError."""
        status = resp.status_code
        if 200 <= status < 300:
            try:
                return resp.json()
            except ValueError:
                return resp.text
        error = APIError(f"HTTP {status} from {url}", status_code=status,
                         response_body=resp.text, url=url)
        if status in self.RETRYABLE_STATUS:
            raise _Retry(error, _retry_after(resp.headers.get("Retry-After")))
        raise error

    def request(self, method, path="", params=None, json=None, headers=None):
        """Send a request; transport errors and 429/5xx are retried up to max_retries."""
        url = self._url(path)
        last_error = None
        for attempt in range(self.max_retries + 1):
            if self.rate_limiter:
                self.rate_limiter.wait()
            start = time.time()
            try:
                resp = self.session.request(method, url, params=params, json=json,
                                            headers=headers, timeout=self.timeout)
                logger.debug(f"{method} {url} → {resp.status_code} ({int((time.time() - start) * 1000)}ms)")
                return self._handle(resp, url)
            except _Retry as r:
                last_error, wait = r.error, r.wait
            except requests.exceptions.RequestException as e:
                last_error, wait = e, None

            if attempt < self.max_retries:
                wait = wait if wait is not None else self._backoff(attempt)
                logger.warning(f"{method} {url} failed ({last_error}), retrying in {wait:.1f}s "
                               f"(attempt {attempt + 1}/{self.max_retries + 1})")
                time.sleep(wait)

        logger.error(f"{method} {url} gave up after {self.max_retries + 1} attempt(s): {last_error}")
        raise last_error
