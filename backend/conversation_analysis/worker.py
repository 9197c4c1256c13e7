"""Background workers that drain the analysis job queue.

Classes:
    AnalysisWorkerPool: Fixed set of asyncio tasks polling for claimable jobs.

Functions:
    main(): Entry point for ``python -m conversation_analysis.worker``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import socket
from typing import Callable, Optional
from uuid import uuid4

from conversation_analysis.core.config import Settings, get_settings
from conversation_analysis.core.errors import AnalysisError, ConcurrencyError
from conversation_analysis.core.logging import configure_logging
from conversation_analysis.services.analysis import AnalysisService

_LOGGER = logging.getLogger(__name__)


class AnalysisWorkerPool:
    def __init__(
        self,
        session_factory: Callable,
        *,
        service: AnalysisService | None = None,
        settings: Settings | None = None,
        concurrency: Optional[int] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._session_factory = session_factory
        self._service = service or AnalysisService(settings=self._settings)
        self._concurrency = max(1, concurrency or self._settings.worker_concurrency)
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._prefix = f"{socket.gethostname()}:{os.getpid()}"

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def _owner_id(self, index: int) -> str:
        return f"{self._prefix}:{index}:{uuid4().hex[:8]}"

    async def run_once(self, owner: str) -> bool:
        """Claim and process at most one job. Returns whether a job was found."""

        async with self._session_factory() as session:
            job = await self._service.queue.claim_next(session, owner)
            if job is None:
                return False
            job_id = job.id
            try:
                await self._service.run_job(session, job, owner)
            except ConcurrencyError:
                _LOGGER.warning("Worker %s abandoned job %s after losing its lock", owner, job_id)
            except AnalysisError as exc:
                _LOGGER.warning("Worker %s finished job %s with error: %s", owner, job_id, exc)
            except Exception:
                _LOGGER.exception("Worker %s hit an unexpected error on job %s", owner, job_id)
            return True

    async def _loop(self, index: int) -> None:
        owner = self._owner_id(index)
        _LOGGER.info("Analysis worker %s started", owner)
        while not self._stop.is_set():
            try:
                found = await self.run_once(owner)
            except Exception:
                _LOGGER.exception("Worker %s failed to poll the queue", owner)
                found = False
            if found:
                continue
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._settings.worker_poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        _LOGGER.info("Analysis worker %s stopped", owner)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._tasks = [asyncio.create_task(self._loop(index)) for index in range(self._concurrency)]

    def request_stop(self) -> None:
        self._stop.set()

    async def wait_for_stop_request(self) -> None:
        await self._stop.wait()

    async def stop(self) -> None:
        self._stop.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []


async def _serve() -> None:
    from conversation_analysis.db.session import SessionLocal, init_db

    await init_db()
    pool = AnalysisWorkerPool(SessionLocal)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pool.request_stop)
        except NotImplementedError:
            _LOGGER.debug("Signal handlers unavailable on this platform")
    pool.start()
    await pool.wait_for_stop_request()
    await pool.stop()


def main() -> None:
    configure_logging()
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
