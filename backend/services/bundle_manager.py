"""Bundle manager – builds the composition bundle once and shares it."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from services.engine import BundleBuilder

logger = logging.getLogger("renderflow.bundle")


class BundleManager:
    """Lazy, single-flight cache around a ``BundleBuilder``.

    Concurrent ``get_bundle()`` callers await the same build. A failed build is
    not remembered: the next call starts a new one.
    """

    def __init__(self, builder: BundleBuilder, entry_point: str) -> None:
        self.builder = builder
        self.entry_point = entry_point
        self._location: Optional[str] = None
        self._build: Optional[asyncio.Future[str]] = None
        self._generation = 0

    @property
    def location(self) -> Optional[str]:
        return self._location

    async def get_bundle(self) -> str:
        if self._location is not None:
            return self._location
        if self._build is None:
            self._build = asyncio.ensure_future(self._run_build(self._generation))
            # Mark the failure as retrieved even if every waiter was cancelled
            self._build.add_done_callback(lambda f: f.cancelled() or f.exception())
        # Shielded so a cancelled job does not abort the build for everyone else
        return await asyncio.shield(self._build)

    def invalidate(self) -> None:
        logger.info("Bundle invalidated (was %s)", self._location)
        self._location = None
        self._build = None
        self._generation += 1

    async def _run_build(self, generation: int) -> str:
        logger.info("Building bundle from %s …", self.entry_point)
        try:
            location = await self.builder.build(self.entry_point)
        except Exception as e:
            logger.error("Bundle build failed: %s", e)
            if generation == self._generation:
                self._build = None
            raise
        if generation == self._generation:
            self._location = location
            self._build = None
        logger.info("Bundle created at: %s", location)
        return location
