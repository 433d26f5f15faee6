"""HTTP delivery of bulk payloads to Elasticsearch"""
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import NamedTuple, Optional, Set
import httpx
from opentelemetry.sdk.metrics.export import MetricExportResult
from logging_config import get_logger


logger = get_logger(__name__)

BULK_API = "/_bulk"
JSON_CONTENT_TYPE = "application/json"


class Credentials(NamedTuple):
    """Elasticsearch user and password"""
    user: str
    password: str

    @classmethod
    def from_url(cls, url) -> Optional["Credentials"]:
        """Extract credentials from the user-info part of a URL"""
        url = httpx.URL(str(url))
        if not url.username:
            return None
        return cls(url.username, url.password)


def _completed(result: MetricExportResult) -> Future:
    future = Future()
    future.set_result(result)
    return future


class ElasticsearchTransport:
    """Sends bulk payloads to Elasticsearch on a worker pool.

    One ``httpx.Client`` is created per transport and shared by every send.
    Each :meth:`send` returns a future resolving to a ``MetricExportResult``.
    """

    def __init__(
        self,
        endpoint: str,
        credentials: Optional[Credentials] = None,
        timeout: float = 0.0,
        insecure: bool = False,
        max_workers: int = 2,
        http_transport: Optional[httpx.BaseTransport] = None,
    ):
        if not endpoint or not str(endpoint).strip():
            raise ValueError("Elasticsearch endpoint is required")

        try:
            url = httpx.URL(str(endpoint).strip())
        except httpx.InvalidURL as e:
            raise ValueError(f"Invalid Elasticsearch endpoint: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("Elasticsearch endpoint must be an absolute http(s) URL")
        if credentials is None:
            credentials = Credentials.from_url(url)

        base = str(url.copy_with(username=None, password=None)).rstrip("/")
        self.bulk_url = base + BULK_API
        self.credentials = credentials
        self.timeout = timeout
        self.insecure = insecure

        if insecure:
            logger.warning("Insecure connections to Elasticsearch are enabled", endpoint=base)

        client_kwargs = {"verify": not insecure}
        if credentials is not None:
            client_kwargs["auth"] = httpx.BasicAuth(credentials.user, credentials.password)
        if timeout:
            client_kwargs["timeout"] = httpx.Timeout(timeout)
        if http_transport is not None:
            # Environment proxies would be mounted ahead of the given transport
            client_kwargs["transport"] = http_transport
            client_kwargs["trust_env"] = False

        self._client = httpx.Client(**client_kwargs)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="elastic_exporter"
        )
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        self._closed = False

        logger.info(
            "Elasticsearch transport configured",
            bulk_url=self.bulk_url,
            authenticated=credentials is not None,
            timeout=timeout or None,
        )

    def send(self, payload: str) -> Future:
        """Submit a bulk payload and return a future for its result"""
        if not payload:
            logger.debug("Nothing to send")
            return _completed(MetricExportResult.SUCCESS)
        if self._closed:
            logger.warning("Transport is closed, dropping metrics")
            return _completed(MetricExportResult.FAILURE)

        logger.info("Sending metrics", bulk_url=self.bulk_url, payload_bytes=len(payload))
        future = self._executor.submit(self._post, payload)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _post(self, payload: str) -> MetricExportResult:
        deadline = time.monotonic() + self.timeout if self.timeout else None
        try:
            with self._client.stream(
                "POST",
                self.bulk_url,
                content=payload.encode("utf-8"),
                headers={"Content-Type": JSON_CONTENT_TYPE},
            ) as response:
                body = self._read_body(response, deadline)
        except Exception as e:
            self._log_send_error(e)
            return MetricExportResult.FAILURE

        logger.info("Metrics sent", status_code=response.status_code)
        if response.status_code != 200:
            logger.error(
                "Failed to send metrics to Elasticsearch",
                status_code=response.status_code,
                body=body,
                bulk_url=self.bulk_url,
                event_type="elastic_http_error"
            )
            return MetricExportResult.FAILURE
        return MetricExportResult.SUCCESS

    def _read_body(self, response: httpx.Response, deadline: Optional[float]) -> str:
        """Read the response body, failing once the total request deadline passes"""
        chunks = []
        self._check_deadline(response, deadline)
        for chunk in response.iter_bytes():
            self._check_deadline(response, deadline)
            chunks.append(chunk)
        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

    def _check_deadline(self, response: httpx.Response, deadline: Optional[float]) -> None:
        if deadline is not None and time.monotonic() > deadline:
            raise httpx.ReadTimeout(
                f"Request exceeded total timeout of {self.timeout}s",
                request=response.request,
            )

    def _log_send_error(self, error: Exception) -> None:
        """Log a delivery failure according to its cause"""
        context = {"bulk_url": self.bulk_url, "error": str(error), "error_type": type(error).__name__}
        if isinstance(error, httpx.ConnectTimeout):
            logger.error("HTTP connection timeout", event_type="elastic_connect_timeout", **context)
        elif isinstance(error, httpx.ConnectError):
            logger.error("Could not send metrics due to connection problems", event_type="elastic_connect_error", **context)
        elif isinstance(error, httpx.TimeoutException):
            logger.error("HTTP request timeout", event_type="elastic_timeout", **context)
        elif isinstance(error, InterruptedError):
            logger.error("Sending metrics interrupted", event_type="elastic_interrupted", **context)
        elif isinstance(error, (httpx.TransportError, OSError)):
            logger.error("I/O error while sending metrics", event_type="elastic_io_error", exc_info=True, **context)
        else:
            logger.error("Sending metrics error", event_type="elastic_send_error", exc_info=True, **context)

    def pending(self) -> int:
        """Number of sends still in flight"""
        with self._pending_lock:
            return sum(1 for future in self._pending if not future.done())

    def close(self, grace_period: float = 0.0) -> None:
        """Wait up to grace_period seconds for in-flight sends, then release resources"""
        if self._closed:
            return
        self._closed = True

        with self._pending_lock:
            outstanding = set(self._pending)
        if outstanding:
            _, not_done = wait(outstanding, timeout=grace_period)
            if not_done:
                logger.warning("Abandoning in-flight metric exports", abandoned=len(not_done))

        self._executor.shutdown(wait=False)
        self._client.close()
        logger.info("Elasticsearch transport closed")
