"""Per-event workers for streaming gate discovery.

One asyncio task per event id consumes that event's scans strictly in arrival
order, so candidate state is never touched concurrently and needs no locks.
Different events run side by side in the same loop; they share nothing.

Failure handling:
- An invalid scan is logged, counted and dropped; the stream continues.
- An internal invariant violation discards the engine's derived state. The
  engine is rebuilt from its folded per-tag statistics, up to `max_restarts`
  times, after which the worker stays down.
- Any other exception (a failing sink, an unexpected bug) takes the worker
  down at once, without a restart.
A worker that is down drops queued and later scans, so `join` and `submit`
never block on it, and is reported in `WorkerPool.failures`. Other events
keep running.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from gate_intel.config import DiscoveryConfig, settings
from gate_intel.discovery.coordinator import EngineStats, GateDiscoveryEngine, UpdateResult
from gate_intel.discovery.report import QualityReport
from gate_intel.errors import InvalidEventError, UnscoredCandidateAccessError
from gate_intel.models.candidate import CandidateId, CandidateSnapshot
from gate_intel.models.merge import MergeSuggestion
from gate_intel.models.scan_event import ScanEvent

logger = logging.getLogger(__name__)


class DiscoverySink(Protocol):
    """Receives engine output for persistence and display."""

    def upsert_candidates(self, candidates: Sequence[CandidateSnapshot]) -> None:
        """Insert or update candidate records by id."""
        ...

    def replace_merge_suggestions(
        self,
        candidate_ids: Collection[CandidateId],
        suggestions: Sequence[MergeSuggestion],
    ) -> None:
        """Replace every stored suggestion touching `candidate_ids`."""
        ...


@dataclass
class InMemorySink:
    """DiscoverySink that keeps the latest records in dictionaries."""

    candidates: dict[CandidateId, CandidateSnapshot] = field(default_factory=dict)  # pyright: ignore[reportUnknownVariableType]
    suggestions: dict[tuple[CandidateId, CandidateId], MergeSuggestion] = field(
        default_factory=dict  # pyright: ignore[reportUnknownArgumentType]
    )

    def upsert_candidates(self, candidates: Sequence[CandidateSnapshot]) -> None:
        for snapshot in candidates:
            self.candidates[snapshot.id] = snapshot

    def replace_merge_suggestions(
        self,
        candidate_ids: Collection[CandidateId],
        suggestions: Sequence[MergeSuggestion],
    ) -> None:
        ids = set(candidate_ids)
        stale = [
            pair
            for pair in self.suggestions
            if pair[0] in ids or pair[1] in ids
        ]
        for pair in stale:
            del self.suggestions[pair]
        for suggestion in suggestions:
            self.suggestions[suggestion.pair] = suggestion


class EventWorker:
    """Sequential consumer of one event's scan stream.

    Usage:
        worker = EventWorker("event-1", config, sink)
        worker.start()
        await worker.submit(scan)
        await worker.join()
        await worker.stop()
    """

    def __init__(
        self,
        event_id: str,
        config: DiscoveryConfig,
        sink: DiscoverySink,
        *,
        queue_size: int | None = None,
        max_restarts: int | None = None,
    ) -> None:
        self.event_id = event_id
        self.restarts = 0
        self.failure: BaseException | None = None

        self._config = config
        self._sink = sink
        self._max_restarts = settings.worker_max_restarts if max_restarts is None else max_restarts
        self._queue: asyncio.Queue[ScanEvent | None] = asyncio.Queue(
            maxsize=queue_size or settings.worker_queue_size
        )
        self._engine = GateDiscoveryEngine(event_id, config)
        self._task: asyncio.Task[None] | None = None

    @property
    def config(self) -> DiscoveryConfig:
        return self._config

    @property
    def stats(self) -> EngineStats:
        return self._engine.stats

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def candidates(self) -> list[CandidateSnapshot]:
        return self._engine.candidates()

    def merge_suggestions(self) -> list[MergeSuggestion]:
        return self._engine.merge_suggestions()

    def audit(self, tag_a: str, tag_b: str) -> MergeSuggestion:
        return self._engine.audit(tag_a, tag_b)

    def quality_report(self) -> QualityReport:
        return self._engine.quality_report()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(
                self._supervise(), name=f"gate-worker-{self.event_id}"
            )

    async def submit(self, event: ScanEvent) -> bool:
        """Queue a scan for processing.

        Returns:
            False if the worker is down and the scan was dropped.
        """
        if self.failure is not None:
            logger.warning(
                "Dropping scan for failed worker %s (%s)", self.event_id, self.failure
            )
            return False
        await self._queue.put(event)
        if self.failure is not None:
            # Went down while this scan waited for queue space
            self._drain()
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued scan has been fully processed."""
        await self._queue.join()

    async def stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            await self._queue.put(None)
        await self._task

    async def reconfigure(self, config: DiscoveryConfig) -> None:
        """Swap thresholds between folds and recompute derived state."""
        await self._queue.join()
        self._config = config
        self._rebuild()
        logger.info("Worker %s reconfigured", self.event_id)

    async def _supervise(self) -> None:
        while True:
            try:
                await self._run()
                return
            except UnscoredCandidateAccessError as e:
                self.restarts += 1
                logger.exception(
                    "Worker %s hit an invariant violation (restart %d of %d)",
                    self.event_id,
                    self.restarts,
                    self._max_restarts,
                )
                if self.restarts > self._max_restarts:
                    self._fail(e)
                    return
                try:
                    self._rebuild()
                except Exception as rebuild_error:
                    logger.exception("Worker %s could not be rebuilt", self.event_id)
                    self._fail(rebuild_error)
                    return
            except Exception as e:
                logger.exception("Worker %s crashed", self.event_id)
                self._fail(e)
                return

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    return
                self._process(event)
            finally:
                self._queue.task_done()
            # Yield so one busy event cannot starve the others
            await asyncio.sleep(0)

    def _process(self, event: ScanEvent) -> None:
        try:
            result = self._engine.apply(event)
        except InvalidEventError as e:
            logger.warning("Rejected scan for event %s: %s", self.event_id, e)
            return

        if result.candidate_id is not None:
            self._publish(result)

    def _publish(self, result: UpdateResult) -> None:
        self._sink.upsert_candidates(result.candidates)
        self._sink.replace_merge_suggestions(result.affected_ids, result.suggestions)

    def _rebuild(self) -> None:
        self._engine = self._engine.restarted(self._config)

        snapshots = self._engine.candidates()
        self._sink.upsert_candidates(snapshots)
        self._sink.replace_merge_suggestions(
            [s.id for s in snapshots], self._engine.merge_suggestions()
        )

    def _fail(self, error: BaseException) -> None:
        self.failure = error
        self._drain()
        logger.error("Worker %s is down: %s", self.event_id, error)

    def _drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()


class WorkerPool:
    """Routes scans to one EventWorker per event id.

    Usage:
        async with WorkerPool(sink) as pool:
            for scan in scans:
                await pool.submit(scan)
            await pool.join()
    """

    def __init__(
        self,
        sink: DiscoverySink,
        *,
        config_for: Callable[[str], DiscoveryConfig] | None = None,
        queue_size: int | None = None,
        max_restarts: int | None = None,
    ) -> None:
        self._sink = sink
        self._config_for = config_for or (lambda _event_id: DiscoveryConfig.from_settings())
        self._queue_size = queue_size
        self._max_restarts = max_restarts
        self._workers: dict[str, EventWorker] = {}
        self.unroutable = 0
        """Scans dropped because they carried no event id."""

    async def __aenter__(self) -> WorkerPool:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def __len__(self) -> int:
        return len(self._workers)

    def worker(self, event_id: str) -> EventWorker | None:
        return self._workers.get(event_id)

    @property
    def failures(self) -> dict[str, BaseException]:
        return {
            event_id: w.failure for event_id, w in self._workers.items() if w.failure is not None
        }

    def rejected_counts(self) -> dict[str, int]:
        """Rejected (invalid) scans per event id."""
        return {event_id: w.stats.rejected for event_id, w in self._workers.items()}

    async def submit(self, event: ScanEvent) -> bool:
        """Route a scan to its event's worker, starting the worker if needed.

        Raises:
            ConfigurationError: If the event's configuration is inconsistent.
                No worker is started for it.
        """
        if not event.event_id:
            self.unroutable += 1
            logger.warning("Rejected scan without event_id (tag=%s)", event.declared_tag)
            return False

        worker = self._workers.get(event.event_id)
        if worker is None:
            worker = self._start_worker(event.event_id)
        return await worker.submit(event)

    async def refresh_config(self, event_id: str) -> None:
        """Re-read an event's configuration and apply it between folds."""
        worker = self._workers.get(event_id)
        if worker is not None:
            await worker.reconfigure(self._config_for(event_id))

    async def join(self) -> None:
        await asyncio.gather(*(w.join() for w in self._workers.values()))

    async def close(self) -> None:
        await asyncio.gather(*(w.stop() for w in self._workers.values()))

    def _start_worker(self, event_id: str) -> EventWorker:
        config = self._config_for(event_id)
        worker = EventWorker(
            event_id,
            config,
            self._sink,
            queue_size=self._queue_size,
            max_restarts=self._max_restarts,
        )
        worker.start()
        self._workers[event_id] = worker
        logger.info("Started gate discovery worker for event %s", event_id)
        return worker
