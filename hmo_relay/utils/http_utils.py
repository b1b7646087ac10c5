import logging
import re

import httpx
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from hmo_relay.configs import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_SECRET_PARAM_RE = re.compile(r"(?i)([?&](?:x-plex-token|token|api_password)=)[^&\s'\"]+")


def redact_url(text: str) -> str:
    """Mask credential query parameters in a URL, or in any message embedding one."""
    return _SECRET_PARAM_RE.sub(r"\1REDACTED", str(text))


class DownloadError(Exception):
    def __init__(self, status_code, message):
        self.status_code = status_code
        self.message = message
        super().__init__(message)


def create_httpx_client(
    follow_redirects: bool = True,
    settings: Settings | None = None,
    **kwargs,
) -> httpx.AsyncClient:
    """
    Create an HTTPX AsyncClient for catalog requests.

    Args:
        follow_redirects (bool): Whether to follow 3xx redirects automatically.
        settings (Settings | None): Configuration snapshot supplying timeout and user agent.
        **kwargs: Additional AsyncClient keyword arguments (e.g. ``transport`` in tests).

    Returns:
        httpx.AsyncClient: Configured client.
    """
    settings = settings or default_settings
    kwargs.setdefault("timeout", settings.source_timeout)
    headers = {"user-agent": settings.user_agent, "accept": "application/json"}
    headers.update(kwargs.pop("headers", None) or {})
    return httpx.AsyncClient(follow_redirects=follow_redirects, headers=headers, **kwargs)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(DownloadError),
    reraise=True,
)
async def fetch_with_retry(client, method, url, headers=None, **kwargs):
    """
    Fetch a URL with retry logic.

    Transient failures (timeouts, transport errors, 5xx) are raised as
    ``DownloadError`` and retried. Client errors (4xx) are re-raised as
    ``httpx.HTTPStatusError`` without retrying.

    Args:
        client (httpx.AsyncClient): HTTP client to use for the request.
        method (str): HTTP method (e.g., GET, POST).
        url (str): Target URL.
        headers (dict): Request headers.
        **kwargs: Additional request arguments.

    Returns:
        httpx.Response: HTTP response.

    Raises:
        DownloadError: If the request fails after retries.
        httpx.HTTPStatusError: For client errors that are not worth retrying.
    """
    try:
        response = await client.request(method, url, headers=headers, **kwargs)
        response.raise_for_status()
        return response
    except httpx.TimeoutException:
        logger.warning(f"Timeout while fetching {url}")
        raise DownloadError(409, f"Timeout while fetching {url}")
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error {e.response.status_code} while fetching {url}")
        if e.response.status_code < 500:
            raise
        raise DownloadError(e.response.status_code, f"HTTP error {e.response.status_code} while fetching {url}")
    except httpx.TransportError as e:
        logger.warning(f"Transport error while fetching {url}: {e}")
        raise DownloadError(502, f"Transport error while fetching {url}: {e}")


class SinkStreamingResponse(StreamingResponse):
    """
    Streaming response over a ``QueueSink``.

    The sink is closed however the response ends, including a client that
    disconnects before the body is ever iterated, so a relay blocked on a full
    sink fails its next write instead of waiting forever.
    """

    def __init__(self, sink, status_code: int = 200, media_type: str | None = None, **kwargs) -> None:
        super().__init__(sink, status_code=status_code, media_type=media_type, **kwargs)
        self.sink = sink

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.sink.close()
