"""Reconciliation of desired and server-side event subscriptions."""

import asyncio
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Set

from ..config.settings import SUBSCRIPTIONS
from ..utils.validation import arg_one_of
from .correlator import MessageCorrelator

logger = logging.getLogger(__name__)


class SubscriptionSynchronizer:
    """
    Keeps a connection's subscriptions equal to a fixed desired set.

    The server subscribes new connections to a default set, so each
    handshake is followed by a ``sync``: fetch the actual set, then
    unsubscribe from the extras and subscribe to the missing ones
    concurrently. Running ``sync`` again right after is a no-op.
    """

    def __init__(self, correlator: MessageCorrelator, desired: Iterable[str] = ()):
        desired = list(desired)
        for sub in desired:
            arg_one_of(sub, "subscription", SUBSCRIPTIONS)

        self.correlator = correlator
        self.desired: FrozenSet[str] = frozenset(desired)
        self.actual: Set[str] = set()

    async def get_subscriptions(self) -> List[str]:
        response = await self.correlator.send_and_wait({'type': 'get_subscription_level'})
        return self._store(response)

    async def get_valid_subscriptions(self) -> List[str]:
        response = await self.correlator.send_and_wait({'type': 'get_valid_subscription_levels'})
        return list(response.get('valid_subscription_levels') or [])

    async def subscribe(self, event: str) -> List[str]:
        arg_one_of(event, "event", SUBSCRIPTIONS)
        return await self._send_level_change('subscribe', event)

    async def unsubscribe(self, event: str) -> List[str]:
        arg_one_of(event, "event", SUBSCRIPTIONS)
        return await self._send_level_change('unsubscribe', event)

    async def _send_level_change(self, msg_type: str, event: str) -> List[str]:
        response = await self.correlator.send_and_wait({'type': msg_type, 'event': event})
        return self._store(response)

    async def sync(self) -> Set[str]:
        """Bring the server's subscriptions in line with the desired set."""
        actual = set(await self.get_subscriptions())

        to_remove = actual - self.desired
        to_add = self.desired - actual

        if to_remove or to_add:
            logger.info(
                f"Syncing subscriptions: removing {sorted(to_remove)}, adding {sorted(to_add)}"
            )
            await asyncio.gather(
                # The server may report levels this client does not know about
                *(self._send_level_change('unsubscribe', sub) for sub in sorted(to_remove)),
                *(self._send_level_change('subscribe', sub) for sub in sorted(to_add)),
            )

        # Concurrent replies can arrive in any order, so the last one stored
        # is not necessarily the final state
        self.actual = (actual - to_remove) | to_add
        return set(self.actual)

    def _store(self, response: Dict[str, Any]) -> List[str]:
        subs = list(response.get('subscription_level') or [])
        self.actual = set(subs)
        return subs
