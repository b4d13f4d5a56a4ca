"""
HTTP adapter shared by the market data provider clients.

Wraps ``httpx.AsyncClient`` so that every request is bounded by a timeout and
transport level failures surface as ``UpstreamError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

import httpx
from loguru import logger

from marketcharts import __version__
from marketcharts.core.exceptions import UpstreamError


@dataclass
class HttpConfig:
    """Configuration for HTTP client behavior."""

    base_url: str
    timeout: float = 30.0
    max_redirects: int = 5
    verify_ssl: bool = True
    user_agent: str = f"marketcharts/{__version__}"
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate HTTP configuration."""
        if not self.base_url:
            raise ValueError("base_url cannot be empty")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_redirects < 0:
            raise ValueError("max_redirects must be non-negative")


class HttpClient:
    """Lazily created ``httpx.AsyncClient`` bound to one provider."""

    def __init__(
        self,
        http_config: HttpConfig,
        provider_name: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.http_config = http_config
        self.provider_name = provider_name
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> HttpClient:
        self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.http_config.base_url,
                timeout=httpx.Timeout(self.http_config.timeout),
                follow_redirects=True,
                max_redirects=self.http_config.max_redirects,
                verify=self.http_config.verify_ssl,
                headers={"User-Agent": self.http_config.user_agent, **self.http_config.headers},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """Issue a GET request, mapping timeouts and transport errors to ``UpstreamError``."""
        client = self._ensure_client()
        try:
            return await client.get(path, params=params)
        except httpx.TimeoutException as exc:
            logger.bind(provider=self.provider_name).debug("request to {} timed out", path)
            raise UpstreamError(
                f"{self.provider_name} request timed out after {self.http_config.timeout}s",
                self.provider_name,
                details={"path": path},
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(
                f"{self.provider_name} transport error: {exc}",
                self.provider_name,
                details={"path": path},
            ) from exc
