"""Background removal of expired task records."""

from __future__ import annotations

import asyncio
import logging

from song_tasks.engine.clock import Clock, utc_now
from song_tasks.errors import StoreError
from song_tasks.storage.base import TaskStore

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(self, store: TaskStore, *, interval_s: float, clock: Clock = utc_now) -> None:
        self.store = store
        self.interval_s = interval_s
        self._clock = clock

    def sweep_once(self) -> int:
        deleted = self.store.delete_expired(self._clock())
        logger.info("sweep event=completed deleted=%d", deleted)
        return deleted

    async def run_forever(self) -> None:
        # The store call blocks, so it runs in a worker thread off the event loop.
        while True:
            try:
                await asyncio.to_thread(self.sweep_once)
            except StoreError as exc:
                logger.warning("sweep event=failed reason=%s", exc)
            except Exception:  # noqa: BLE001
                logger.exception("sweep event=crashed")
            await asyncio.sleep(self.interval_s)
