"""HTTP client for the remote configuration backend."""

import json
import threading
import time
from io import BytesIO

import httpx
import structlog

from remote_config.fetch.config import FetchConfig
from remote_config.fetch.constants import (
    API_KEY_HEADER,
    DEFAULT_CHUNK_SIZE,
    HTTP_STATUS_NOT_MODIFIED,
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
)
from remote_config.fetch.metrics import FetchMetrics
from remote_config.fetch.models import FetchErrorClass, FetchResult, RawSnapshot
from remote_config.fetch.redact import redact_headers, redact_url_credentials
from remote_config.types import ConfigScalar


logger = structlog.get_logger()


class ResponseSizeExceededError(Exception):
    """Raised when response size exceeds the configured limit."""


class HttpConfigFetcher:
    """Fetches configuration snapshots over HTTP.

    Provides a single bounded POST per fetch with:
    - Attribute payload (user and app maps) as the JSON body
    - ETag conditional requests (304 means "unchanged")
    - Maximum response size enforcement
    - Header redaction for logging
    - Metrics collection

    There are no retries here; the manager retries on its next tick.
    """

    def __init__(
        self,
        config: FetchConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Fetch configuration.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self._config = config
        self._metrics = FetchMetrics.get_instance()
        self._client = httpx.Client(
            timeout=config.timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )
        self._etag: str | None = None
        self._etag_lock = threading.Lock()
        self._log = logger.bind(
            component="fetch",
            namespace=config.namespace,
            endpoint=redact_url_credentials(config.endpoint),
        )

    @property
    def etag(self) -> str | None:
        """Validator from the last successful fetch."""
        with self._etag_lock:
            return self._etag

    def reset_validator(self) -> None:
        """Forget the stored ETag so the next fetch returns a full payload."""
        with self._etag_lock:
            self._etag = None

    def close(self) -> None:
        """Close the underlying client, aborting any in-flight request."""
        self._client.close()
        self._log.debug("fetcher_closed")

    def fetch(
        self,
        user_attributes: dict[str, ConfigScalar],
        app_attributes: dict[str, ConfigScalar],
    ) -> FetchResult:
        """Fetch configuration for the given attributes.

        Args:
            user_attributes: User-level attributes.
            app_attributes: App-level attributes.

        Returns:
            FetchResult with a raw snapshot, a not-modified marker or an error.
        """
        start_ns = time.perf_counter_ns()
        headers = self._build_headers()
        body = {
            "namespace": self._config.namespace,
            "user": dict(user_attributes),
            "app": dict(app_attributes),
        }

        result = self._execute(headers, body, start_ns)

        self._metrics.record_duration(result.duration_ms)
        if result.error is not None:
            self._metrics.record_failure(result.error.error_class)
        elif result.not_modified:
            self._metrics.record_not_modified()

        if result.etag is not None and result.error is None:
            with self._etag_lock:
                self._etag = result.etag

        self._log.info(
            "fetch_complete",
            status_code=result.status_code,
            not_modified=result.not_modified,
            duration_ms=round(result.duration_ms, 2),
            error_class=result.error.error_class.value if result.error else None,
        )
        return result

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "User-Agent": self._config.user_agent,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        headers.update(self._config.extra_headers)
        if self._config.api_key is not None:
            headers[API_KEY_HEADER] = self._config.api_key.get_secret_value()
        etag = self.etag
        if etag:
            headers["If-None-Match"] = etag
        return headers

    def _elapsed_ms(self, start_ns: int) -> float:
        return (time.perf_counter_ns() - start_ns) / 1_000_000

    def _execute(
        self,
        headers: dict[str, str],
        body: dict[str, object],
        start_ns: int,
    ) -> FetchResult:
        """Execute a single request and classify the outcome.

        Args:
            headers: Request headers.
            body: JSON request body.
            start_ns: perf_counter_ns at fetch start.

        Returns:
            Classified FetchResult.
        """
        self._log.debug("fetch_started", headers=redact_headers(headers))

        try:
            with self._client.stream(
                "POST", self._config.endpoint, headers=headers, json=body
            ) as response:
                if response.status_code == HTTP_STATUS_NOT_MODIFIED:
                    self._metrics.record_response(response.status_code, 0)
                    return FetchResult(
                        not_modified=True,
                        status_code=response.status_code,
                        etag=response.headers.get("etag"),
                        duration_ms=self._elapsed_ms(start_ns),
                    )

                payload = self._read_body_with_limit(response)
                self._metrics.record_response(response.status_code, len(payload))

                if not HTTP_STATUS_OK_MIN <= response.status_code < HTTP_STATUS_OK_MAX:
                    return FetchResult.failure(
                        FetchErrorClass.SERVER_REJECTED,
                        f"Backend rejected request ({response.status_code})",
                        status_code=response.status_code,
                        duration_ms=self._elapsed_ms(start_ns),
                    )

                return self._decode(
                    payload,
                    response.status_code,
                    response.headers.get("etag"),
                    start_ns,
                )

        except httpx.TimeoutException as e:
            return FetchResult.failure(
                FetchErrorClass.TIMEOUT,
                f"Request timed out: {e}",
                duration_ms=self._elapsed_ms(start_ns),
            )

        except ResponseSizeExceededError as e:
            return FetchResult.failure(
                FetchErrorClass.MALFORMED_RESPONSE,
                str(e),
                duration_ms=self._elapsed_ms(start_ns),
            )

        except httpx.HTTPError as e:
            return FetchResult.failure(
                FetchErrorClass.NETWORK_UNAVAILABLE,
                f"Network failure: {e}",
                duration_ms=self._elapsed_ms(start_ns),
            )

        except RuntimeError as e:
            # httpx raises RuntimeError once the client has been closed
            return FetchResult.failure(
                FetchErrorClass.NETWORK_UNAVAILABLE,
                f"Fetcher unavailable: {e}",
                duration_ms=self._elapsed_ms(start_ns),
            )

    def _decode(
        self,
        payload: bytes,
        status_code: int,
        etag: str | None,
        start_ns: int,
    ) -> FetchResult:
        try:
            decoded = json.loads(payload)
        except ValueError as e:
            return FetchResult.failure(
                FetchErrorClass.MALFORMED_RESPONSE,
                f"Response is not valid JSON: {e}",
                status_code=status_code,
                duration_ms=self._elapsed_ms(start_ns),
            )

        if not isinstance(decoded, dict):
            return FetchResult.failure(
                FetchErrorClass.MALFORMED_RESPONSE,
                f"Response root must be an object, got {type(decoded).__name__}",
                status_code=status_code,
                duration_ms=self._elapsed_ms(start_ns),
            )

        return FetchResult(
            raw=RawSnapshot(decoded),
            status_code=status_code,
            etag=etag,
            duration_ms=self._elapsed_ms(start_ns),
        )

    def _read_body_with_limit(self, response: httpx.Response) -> bytes:
        """Read a streamed response body with a size limit.

        Raises:
            ResponseSizeExceededError: If the body exceeds the limit.
        """
        max_size = self._config.max_response_size_bytes
        content_length = response.headers.get("content-length")
        if (
            content_length
            and content_length.isdigit()
            and int(content_length) > max_size
        ):
            msg = f"Response size {content_length} exceeds limit {max_size}"
            raise ResponseSizeExceededError(msg)

        buffer = BytesIO()
        total_read = 0
        for chunk in response.iter_bytes(chunk_size=DEFAULT_CHUNK_SIZE):
            total_read += len(chunk)
            if total_read > max_size:
                msg = (
                    f"Response size exceeded limit of {max_size} bytes "
                    f"(read {total_read} bytes)"
                )
                raise ResponseSizeExceededError(msg)
            buffer.write(chunk)

        return buffer.getvalue()
