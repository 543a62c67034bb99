"""In-process gateway session registry.

Holds one console client per platform URL for the lifetime of the process.
Sessions are created on first use and evicted (logged out, closed) when the
owning platform is removed.  Ephemeral -- empty on process restart.
"""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from difyascode.sync_engine.gateway.base import RemoteGateway
from difyascode.sync_engine.store.layout import session_key

GatewayFactory = Callable[[str], RemoteGateway]


class GatewaySessions:
    """Registry of live gateway sessions keyed by normalised platform URL.

    Several accounts on the same platform share one session; the reconcilers
    log in again before working on each account, which replaces the tokens.
    """

    def __init__(self, factory: GatewayFactory) -> None:
        self._factory = factory
        self._sessions: dict[str, RemoteGateway] = {}

    # -- Mutation --------------------------------------------------------------

    def get(self, url: str) -> RemoteGateway:
        """Return the session for *url*, creating it on first use."""
        key = session_key(url)
        gateway = self._sessions.get(key)
        if gateway is None:
            logger.debug("Sessions: create gateway for {}", key)
            gateway = self._factory(key)
            self._sessions[key] = gateway
        return gateway

    async def evict(self, url: str) -> bool:
        """Log out and close the session for *url*.  Returns ``False`` if none existed."""
        gateway = self._sessions.pop(session_key(url), None)
        if gateway is None:
            return False
        logger.debug("Sessions: evict gateway for {}", session_key(url))
        try:
            await gateway.logout()
        finally:
            await gateway.aclose()
        return True

    async def close_all(self) -> None:
        for url in list(self._sessions):
            await self.evict(url)

    # -- Query -----------------------------------------------------------------

    def __contains__(self, url: str) -> bool:
        return session_key(url) in self._sessions

    @property
    def active_count(self) -> int:
        return len(self._sessions)
