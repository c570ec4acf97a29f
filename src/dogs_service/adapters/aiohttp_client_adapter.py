# dogs_service/adapters/aiohttp_client_adapter.py
import asyncio
import aiohttp
from typing import Any, Dict, Optional

from dogs_service.core.interfaces.http_client import HttpClientPort
from dogs_service.core.exceptions import TransientUpstreamError, UpstreamError
from dogs_service.core.models.problem import ProblemResponse
from dogs_service.core.settings import logger

# Upstream statuses that signal a temporary condition on the remote side
TRANSIENT_STATUSES = frozenset({502, 503, 504})


class AioHttpClientAdapter(HttpClientPort):
    def __init__(self):
        self._session: Optional[aiohttp.ClientSession] = None
        # Per-field defaults so callers don't need to construct ClientTimeout objects themselves.
        self._default_total: float = 10.0
        self._default_sock_read: float = 10.0
        self._default_sock_connect: float = 5.0
        self._default_client_timeout = aiohttp.ClientTimeout(
            total=self._default_total,
            sock_read=self._default_sock_read,
            sock_connect=self._default_sock_connect,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()
        return False

    async def get(self, url: str, timeout: float | None = None) -> Dict[str, Any]:
        if self._session is None:
            raise RuntimeError("HTTP client not initialized. Use 'async with' context manager.")
        if timeout is None:
            client_timeout = self._default_client_timeout
        else:
            # Keep adapter-level sock_read/sock_connect values but apply provided total
            client_timeout = aiohttp.ClientTimeout(
                total=timeout,
                sock_read=self._default_sock_read,
                sock_connect=self._default_sock_connect,
            )
        return await self._fetch_json(url, timeout=client_timeout)

    async def _fetch_json(self, url: str, **kwargs) -> Dict[str, Any]:
        """
        Fetch JSON from URL.

        Translates HTTP/network errors into `UpstreamError`; timeouts, connection
        errors and 502/503/504 become `TransientUpstreamError` so callers can retry them.
        """
        if self._session is None:
            raise RuntimeError("HTTP client not initialized. Use 'async with' context manager.")

        try:
            async with self._session.get(url, **kwargs) as response:
                # Raise for HTTP error status codes before looking at the body
                response.raise_for_status()
                try:
                    return await response.json()
                except aiohttp.ContentTypeError:
                    response_text = await response.text()
                    logger.error(
                        "Invalid JSON response from remote service. URL: %s, Content: %s",
                        url,
                        response_text[:500],
                    )
                    raise UpstreamError(
                        ProblemResponse(
                            title="Invalid Response Content",
                            status=502,
                            detail=(
                                "The response from the remote service was not valid JSON"
                                f": '{response_text[:100]}'"
                            ),
                        )
                    )

        except asyncio.TimeoutError:
            logger.error("Timeout when requesting remote service. URL: %s", url)
            raise TransientUpstreamError(
                ProblemResponse(
                    title="Upstream Timeout",
                    status=504,
                    detail="The request to the remote service timed out.",
                )
            )

        except aiohttp.ClientResponseError as client_response_error:
            status = client_response_error.status
            logger.error(
                "HTTP error when requesting remote service. URL: %s, Status: %s, Error: %s",
                url,
                status,
                str(client_response_error),
            )
            error_cls = TransientUpstreamError if status in TRANSIENT_STATUSES else UpstreamError
            raise error_cls(
                ProblemResponse(
                    title="Upstream HTTP Error",
                    status=status,
                    detail=f"The remote service returned an HTTP error: {status}",
                )
            )

        except aiohttp.ClientError as client_error:
            logger.error(
                "Connection error when requesting remote service. URL: %s, Error: %s",
                url,
                str(client_error),
            )
            raise TransientUpstreamError(
                ProblemResponse(
                    title="Upstream Connection Error",
                    status=502,
                    detail="There was a connection error with the remote service.",
                )
            )

    async def close(self) -> None:
        """Close the session"""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
