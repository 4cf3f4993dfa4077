"""Shared HTTP plumbing for all remote service clients."""

from typing import Any, Dict, Optional

import requests

from ..errors import NotFound, RemoteUnavailable
from ..logger import get_logger
from ..retry import RetryError, TransientStatusError, exponential_backoff, should_retry_http_status

logger = get_logger()

RETRYABLE_EXCEPTIONS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    TransientStatusError,
)


class OkapiClient:
    """JSON-over-HTTP client for services behind one Okapi gateway.

    Transient failures (timeouts, connection errors, 408/429/5xx) are retried
    with exponential backoff. After that every failure surfaces as
    RemoteUnavailable, except 404 which surfaces as NotFound.

    Args:
        base_url: gateway URL, e.g. http://localhost:9130
        tenant: value for the X-Okapi-Tenant header
        token: value for the X-Okapi-Token header
        session: requests.Session to use (a new one by default)
        timeout: per-request timeout in seconds
        max_retries: retry attempts for transient failures
        base_delay: first backoff delay in seconds
    """

    def __init__(
        self,
        base_url: str,
        tenant: Optional[str] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 15,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if tenant:
            self.session.headers["X-Okapi-Tenant"] = tenant
        if token:
            self.session.headers["X-Okapi-Token"] = token

        self._send = exponential_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            exceptions=RETRYABLE_EXCEPTIONS,
            on_retry=self._log_retry,
        )(self._send_once)

    @staticmethod
    def _log_retry(attempt: int, exc: Exception, delay: float) -> None:
        logger.warning("Retrying remote call", attempt=attempt, delay=delay, error=str(exc))

    def _send_once(self, method: str, url: str, **kwargs) -> requests.Response:
        resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        if should_retry_http_status(resp.status_code):
            raise TransientStatusError(resp.status_code, url)
        return resp

    def request_json(
        self,
        method: str,
        path: str,
        service: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        kind: Optional[str] = None,
        key: Optional[str] = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (None for empty bodies).

        Args:
            method: HTTP method
            path: path relative to the gateway URL
            service: service name used for logging and metrics
            params: query string parameters
            json_body: JSON payload for PUT/POST
            kind, key: what a 404 means, for the NotFound error

        Raises:
            NotFound: on 404
            RemoteUnavailable: on any other failure
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.record_remote_call(service)
        try:
            resp = self._send(method, url, params=params, json=json_body)
            resp.raise_for_status()
        except RetryError as e:
            cause = e.__cause__
            status = cause.status_code if isinstance(cause, TransientStatusError) else None
            logger.record_error(f"{service}_{type(cause).__name__}")
            logger.error(f"{service} request failed after retries", url=url, error=str(cause))
            raise RemoteUnavailable(f"{service} unavailable: {cause}", service=service, status=status) from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.record_error(f"{service}_HTTPError_{status}")
            if status == 404:
                logger.warning(f"{service} resource not found", url=url, status=404)
                raise NotFound(kind or service, key or url) from e
            logger.error(f"{service} request failed", url=url, status=status)
            raise RemoteUnavailable(f"{service} request failed ({status}): {url}", service=service, status=status) from e
        except requests.exceptions.RequestException as e:
            logger.record_error(f"{service}_RequestException")
            logger.error(f"{service} request error", url=url, error=str(e))
            raise RemoteUnavailable(f"{service} request error: {e}", service=service) from e

        logger.record_remote_success(service)
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteUnavailable(f"{service} returned invalid JSON: {url}", service=service) from e

    def get_json(self, path: str, service: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return self.request_json("GET", path, service, params=params, **kwargs)

    def put_json(self, path: str, service: str, body: Any, **kwargs) -> Any:
        return self.request_json("PUT", path, service, json_body=body, **kwargs)


def exact_match(field: str, value: str) -> str:
    """Build a CQL exact-match expression, e.g. name=="Book"."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'{field}=="{escaped}"'
