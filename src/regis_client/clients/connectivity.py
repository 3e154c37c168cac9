"""Online/offline state with change notifications."""

import asyncio
from typing import Awaitable, Callable, List, Optional

from regis_client.utils.logger import logger

ConnectivityListener = Callable[[bool], None]
HealthProbe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """
    Holds the current connectivity flag.

    A platform integration calls ``set_online``; where none exists,
    ``watch`` derives the flag by polling a health probe.
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[ConnectivityListener] = []
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Update the flag, notifying listeners only on an actual change."""
        if online == self._online:
            return
        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        for listener in list(self._listeners):
            listener(online)

    def watch(self, probe: HealthProbe, interval: float) -> asyncio.Task:
        """Poll ``probe`` every ``interval`` seconds until ``stop()``."""
        self.stop()
        self._watch_task = asyncio.ensure_future(self._poll(probe, interval))
        return self._watch_task

    def stop(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None

    async def _poll(self, probe: HealthProbe, interval: float) -> None:
        while True:
            self.set_online(await probe())
            await asyncio.sleep(interval)
