"""Krist REST API client for the calls the WebSocket client depends on."""

import asyncio
import logging
import platform
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import aiohttp

from ..config.settings import RestConfig, RetryConfig
from ..errors import RateLimitError, WebSocketStartError, coerce_krist_error
from ..utils.rate_limiter import RateLimiter
from ..utils.retry import exponential_backoff
from ..utils.validation import arg_string_non_empty

logger = logging.getLogger(__name__)


class KristRESTClient:
    """Krist REST API client."""

    def __init__(
        self,
        sync_node: str,
        user_agent: str,
        config: RestConfig,
        retry_config: RetryConfig,
        rate_limiter: RateLimiter,
        session: Optional[aiohttp.ClientSession] = None
    ):
        arg_string_non_empty(sync_node, "sync_node")
        arg_string_non_empty(user_agent, "user_agent")

        self.sync_node = sync_node
        self.user_agent = user_agent
        self.config = config
        self.retry_config = retry_config
        self.rate_limiter = rate_limiter
        self.session = session
        self._owns_session = session is None

        self.endpoints = {
            'ws_start': 'ws/start',
            'motd': 'motd',
            'login': 'login',
        }

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
                headers={
                    'Accept': 'application/json',
                    'Library-Agent': f"{self.user_agent} ({platform.system()} {platform.release()}; "
                                     f"Python {platform.python_version()})",
                }
            )
            self._owns_session = True

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Make a rate-limited request to the Krist API.

        Transient network failures are retried with exponential backoff.
        Error bodies are raised as typed KristErrors and never retried.
        """
        if not self.session:
            raise RuntimeError("Client not initialized. Use async context manager or open().")

        arg_string_non_empty(method, "method")
        arg_string_non_empty(endpoint, "endpoint")
        url = urljoin(self.sync_node, endpoint.lstrip('/'))

        await self.rate_limiter.acquire()

        async def _request():
            async with self.session.request(method, url, params=params, json=body) as response:
                if response.status == 429:
                    raise RateLimitError()
                return await response.json(content_type=None)

        data = await exponential_backoff(
            _request,
            max_attempts=self.retry_config.max_attempts,
            initial_delay=self.retry_config.initial_backoff_seconds,
            max_delay=self.retry_config.max_backoff_seconds,
            backoff_factor=self.retry_config.backoff_multiplier,
            jitter=self.retry_config.jitter,
            exceptions=(aiohttp.ClientConnectionError, asyncio.TimeoutError)
        )

        if not isinstance(data, dict) or not data.get('ok') or data.get('error'):
            raise coerce_krist_error(data if isinstance(data, dict) else {})

        return data

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request('GET', endpoint, params=params)

    async def post(self, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request('POST', endpoint, body=body or {})

    async def ws_start(self, private_key: Optional[str] = None) -> str:
        """
        Exchange an optional private key for a one-time WebSocket URL.

        Without a private key the resulting connection is a guest connection.
        """
        body = {'privatekey': private_key} if private_key else {}
        data = await self.post(self.endpoints['ws_start'], body)

        url = data.get('url')
        if not url:
            raise WebSocketStartError()

        logger.debug(f"Obtained WebSocket URL ({'authenticated' if private_key else 'guest'})")
        return url

    async def get_motd(self) -> Dict[str, Any]:
        """Get the node's message of the day and status snapshot."""
        return await self.get(self.endpoints['motd'])

    async def login(self, private_key: str) -> Optional[str]:
        """
        Check a private key against the node.

        Returns:
            The authenticated address, or None if the key was rejected
        """
        arg_string_non_empty(private_key, "private_key")
        data = await self.post(self.endpoints['login'], {'privatekey': private_key})
        return data.get('address') if data.get('authed') else None
