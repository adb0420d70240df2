import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Tuple

from launchpad.core.errors import ConflictError
from launchpad.modules.manifests.schemas import Environment

logger = logging.getLogger(__name__)


class RunLocks:
    """One pipeline or destroy at a time per (app_id, environment); extra callers are rejected, not queued."""

    def __init__(self):
        self._locks: Dict[Tuple[str, Environment], asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, app_id: str, environment: Environment):
        key = (app_id, environment)
        lock = self._locks.setdefault(key, asyncio.Lock())
        # No await between the check and the acquire, so this is atomic on the event loop
        if lock.locked():
            raise ConflictError(f"A {environment.value} run for app {app_id} is already in progress")
        try:
            async with lock:
                logger.debug(f"Acquired run lock for {app_id}/{environment.value}")
                yield
        finally:
            if not lock.locked():
                self._locks.pop(key, None)
