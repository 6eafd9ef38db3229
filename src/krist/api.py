"""Entry point tying the REST client, rate limiters and WebSocket clients together."""

import logging
from typing import Iterable, Optional

import aiohttp

from .clients.rest import KristRESTClient
from .config.settings import KristSettings, WsConfig
from .crypto.wallet_formats import AuthOptions
from .utils.rate_limiter import RateLimiter
from .ws.client import ConnectFn, KristWsClient

logger = logging.getLogger(__name__)

REST_LIMITER_NAME = "krist-rest"
WS_LIMITER_NAME = "krist-ws"


class KristApi:
    """
    Client for a Krist node.

    Unless limiters are passed in, every KristApi in the process draws from
    the same process-wide REST and WebSocket rate limiters, since the node
    enforces its quotas per client IP.

    Example::

        async with KristApi() as api:
            client = api.create_ws_client(AuthOptions(password="hunter2"))
            client.on(WsEvent.READY, on_ready)
            await client.connect()
    """

    def __init__(
        self,
        settings: Optional[KristSettings] = None,
        rest_rate_limiter: Optional[RateLimiter] = None,
        ws_rate_limiter: Optional[RateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.settings = settings or KristSettings()

        self.rest_rate_limiter = rest_rate_limiter or RateLimiter.shared(
            REST_LIMITER_NAME, self.settings.rest.rate_limit_requests_per_minute
        )
        self.ws_rate_limiter = ws_rate_limiter or RateLimiter.shared(
            WS_LIMITER_NAME, self.settings.ws.rate_limit_messages_per_minute
        )

        self.rest = KristRESTClient(
            sync_node=self.settings.sync_node,
            user_agent=self.settings.user_agent,
            config=self.settings.rest,
            retry_config=self.settings.retry,
            rate_limiter=self.rest_rate_limiter,
            session=session
        )

    async def __aenter__(self):
        await self.rest.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.rest.close()

    def create_ws_client(
        self,
        auth: Optional[AuthOptions] = None,
        initial_subscriptions: Optional[Iterable[str]] = None,
        max_reconnect_seconds: Optional[float] = None,
        connect_fn: Optional[ConnectFn] = None
    ) -> KristWsClient:
        """
        Create a WebSocket client. Without ``auth`` it connects as a guest.

        Register observers on the returned client, then call ``connect``.
        """
        overrides = {}
        if initial_subscriptions is not None:
            overrides['initial_subscriptions'] = list(initial_subscriptions)
        if max_reconnect_seconds is not None:
            overrides['max_reconnect_seconds'] = max_reconnect_seconds

        config = WsConfig(**{**self.settings.ws.model_dump(), **overrides})
        logger.debug(
            f"Creating WebSocket client ({'authenticated' if auth else 'guest'}, "
            f"subscriptions={config.initial_subscriptions})"
        )

        return KristWsClient(
            self.rest,
            self.ws_rate_limiter,
            config=config,
            auth=auth,
            user_agent=self.settings.user_agent,
            connect_fn=connect_fn
        )
