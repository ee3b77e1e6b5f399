"""Instance metadata service (IMDS) HTTP client.

Thin wrapper around a requests session that every platform probe shares.
Each request carries its own (connect, read) timeout and an overall
deadline of the same length, so a hanging or trickling endpoint is bounded
per call. Every transport failure is translated into the
ProbeError taxonomy that the detector folds into ``unknown``.

Security:
- Plain HTTP to the link-local address only (no redirects followed)
- Environment proxies ignored: the endpoint must never leave the host
- No retries
"""

import logging
import threading
from typing import Any

import requests

logger = logging.getLogger(__name__)

DEFAULT_IMDS_HOST = "169.254.169.254"


class ProbeError(Exception):
    """Base class for failures while probing a metadata endpoint."""

    pass


class NetworkUnreachable(ProbeError):
    """The metadata endpoint could not be reached."""

    pass


class ProbeTimeout(ProbeError):
    """The metadata endpoint did not answer within the probe timeout."""

    pass


class MalformedResponse(ProbeError):
    """The endpoint answered, but not with anything we recognize."""

    pass


class ProbeHTTPError(MalformedResponse):
    """The endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} from {url}")
        self.status_code = status_code
        self.url = url


class Unauthenticated(ProbeError):
    """The metadata service rejected our token (or refused to issue one)."""

    pass


class ImdsClient:
    """HTTP access to the metadata endpoint with per-request timeouts."""

    def __init__(
        self,
        host: str = DEFAULT_IMDS_HOST,
        timeout_ms: int = 2000,
        session: requests.Session | None = None,
    ):
        """Initialize the client.

        Args:
            host: Metadata host (IP or host:port), overridable for testing
            timeout_ms: Connect and read timeout applied to every request
            session: Optional pre-built session (tests inject mocks here)
        """
        self.host = host
        self.timeout_ms = timeout_ms
        if session is None:
            session = requests.Session()
            session.trust_env = False
        self.session = session

    @property
    def timeout(self) -> tuple[float, float]:
        """requests-style (connect, read) timeout in seconds."""
        seconds = self.timeout_ms / 1000.0
        return (seconds, seconds)

    def url(self, path: str) -> str:
        """Build the absolute URL for an endpoint path."""
        if not path.startswith("/"):
            path = "/" + path
        return f"http://{self.host}{path}"

    def get(self, path: str, headers: dict[str, str] | None = None) -> requests.Response:
        """Issue a GET against the metadata endpoint.

        Raises:
            ProbeError: On any transport failure or non-2xx status
        """
        return self._request("GET", path, headers)

    def put(self, path: str, headers: dict[str, str] | None = None) -> requests.Response:
        """Issue a PUT against the metadata endpoint.

        Raises:
            ProbeError: On any transport failure or non-2xx status
        """
        return self._request("PUT", path, headers)

    def _request(
        self, method: str, path: str, headers: dict[str, str] | None
    ) -> requests.Response:
        url = self.url(path)
        logger.debug(f"{method} {url}")

        try:
            response = self._send(method, url, headers or {})
        except requests.Timeout as e:
            raise ProbeTimeout(f"{method} {url} timed out after {self.timeout_ms}ms") from e
        except requests.ConnectionError as e:
            raise NetworkUnreachable(f"{method} {url} failed: {e}") from e
        except requests.RequestException as e:
            raise NetworkUnreachable(f"{method} {url} failed: {e}") from e

        if response.status_code in (401, 403):
            raise Unauthenticated(f"HTTP {response.status_code} from {url}")
        if not 200 <= response.status_code < 300:
            raise ProbeHTTPError(response.status_code, url)

        return response

    def _send(self, method: str, url: str, headers: dict[str, str]) -> requests.Response:
        """Perform the request on a worker thread bounded by timeout_ms overall.

        The (connect, read) timeout only bounds each socket operation, so an
        endpoint trickling bytes could otherwise hold the request open.
        """
        outcome: dict[str, Any] = {}

        def worker() -> None:
            try:
                outcome["response"] = self.session.request(
                    method,
                    url,
                    headers=headers,
                    timeout=self.timeout,
                    allow_redirects=False,
                )
            except Exception as e:
                outcome["error"] = e

        thread = threading.Thread(target=worker, name=f"imds-{method.lower()}", daemon=True)
        thread.start()
        thread.join(self.timeout_ms / 1000.0)

        if thread.is_alive():
            # The worker is abandoned and exits when its socket fails or closes
            raise requests.Timeout(f"no complete response within {self.timeout_ms}ms")
        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()


__all__ = [
    "DEFAULT_IMDS_HOST",
    "ImdsClient",
    "MalformedResponse",
    "NetworkUnreachable",
    "ProbeError",
    "ProbeHTTPError",
    "ProbeTimeout",
    "Unauthenticated",
]
