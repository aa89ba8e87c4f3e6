"""
Identifier registry for the signaling relay.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Generic, Hashable, List, Optional, TypeVar

LOG = logging.getLogger(__name__)

ConnectionT = TypeVar("ConnectionT", bound=Hashable)


class ClientRegistry(Generic[ConnectionT]):
    """
    Map user-chosen identifiers to live relay connections.

    Registration is last-write-wins: binding an identifier that is already in
    use silently replaces the previous binding, and the displaced connection
    is left open (it is simply no longer reachable by that identifier).  A
    connection binds at most one identifier at a time.

    All access goes through an ``asyncio.Lock`` so register/lookup/remove from
    concurrently serviced connections never interleave.
    """

    def __init__(self) -> None:
        self._clients: Dict[str, ConnectionT] = {}
        self._identifiers: Dict[ConnectionT, str] = {}
        self._lock = asyncio.Lock()

    async def register(self, identifier: str, connection: ConnectionT) -> Optional[ConnectionT]:
        """
        Bind ``identifier`` to ``connection``.

        Returns the connection that previously held the identifier, if it was
        a different one.
        """

        async with self._lock:
            previous_identifier = self._identifiers.get(connection)
            if previous_identifier is not None and previous_identifier != identifier:
                if self._clients.get(previous_identifier) is connection:
                    del self._clients[previous_identifier]

            displaced = self._clients.get(identifier)
            if displaced is not None and displaced is not connection:
                # The displaced connection keeps running but loses its name.
                if self._identifiers.get(displaced) == identifier:
                    del self._identifiers[displaced]
            else:
                displaced = None

            self._clients[identifier] = connection
            self._identifiers[connection] = identifier

        if displaced is not None:
            LOG.info("Identifier %s rebound to a new connection", identifier)
        return displaced

    async def lookup(self, identifier: str) -> Optional[ConnectionT]:
        async with self._lock:
            return self._clients.get(identifier)

    async def remove(self, connection: ConnectionT) -> List[str]:
        """
        Drop every identifier currently bound to ``connection``.

        Identifiers that were since rebound to another connection are kept.
        """

        async with self._lock:
            removed: List[str] = []
            identifier = self._identifiers.pop(connection, None)
            if identifier is not None and self._clients.get(identifier) is connection:
                del self._clients[identifier]
                removed.append(identifier)
            return removed

    async def identifier_for(self, connection: ConnectionT) -> Optional[str]:
        async with self._lock:
            return self._identifiers.get(connection)

    async def identifiers(self) -> List[str]:
        async with self._lock:
            return sorted(self._clients)

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._clients
