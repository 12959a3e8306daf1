"""
Merging of discovery results and the cancellable discovery session.
"""
import asyncio
import logging
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from print_agent import env
from print_agent.models import PrinterRecord, Transport

logger = logging.getLogger(__name__)


def merge_printers(existing: PrinterRecord, incoming: PrinterRecord) -> PrinterRecord:
    """
    Merge two records for the same host.

    The incoming record is primary when it is IPP, otherwise the existing one
    is. Primary properties win on key collision. A generic "Printer @ host"
    name is replaced by a descriptive one, never the reverse.
    """
    if incoming.transport == Transport.IPP:
        primary, other = incoming, existing
    else:
        primary, other = existing, incoming

    name = primary.name
    if primary.has_generic_name and not other.has_generic_name:
        name = other.name

    return primary.model_copy(update={
        "name": name,
        "properties": {**other.properties, **primary.properties},
        "network_id": primary.network_id or other.network_id,
        "driver_ref": primary.driver_ref or other.driver_ref,
    })


class PrinterAggregator:
    """One record per host. Every change publishes a new mapping."""

    def __init__(self):
        self._records: Dict[str, PrinterRecord] = {}

    def add(self, record: PrinterRecord) -> Optional[PrinterRecord]:
        """Returns the merged record, or None when nothing changed."""
        existing = self._records.get(record.host_address)
        merged = record if existing is None else merge_printers(existing, record)
        if merged == existing:
            return None
        self._records = {**self._records, record.host_address: merged}
        return merged

    def snapshot(self) -> Tuple[PrinterRecord, ...]:
        return tuple(self._records.values())


_STOP = object()


class DiscoverySession:
    """
    Runs discovery sources into a bounded queue and merges what they find.

    Each source has an async `run(put)` that pushes PrinterRecords through
    `put` until it finishes or is cancelled. Iterating the session yields
    merged records as they change; `stop()` cancels every source and ends
    the iteration. A session can be started again after stopping, and each
    start begins with an empty result set.
    """

    def __init__(self, sources: Iterable, queue_size: int = env.DISCOVERY_QUEUE_SIZE):
        self.sources = list(sources)
        self.queue_size = queue_size
        self.aggregator = PrinterAggregator()
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def results(self) -> Tuple[PrinterRecord, ...]:
        return self.aggregator.snapshot()

    async def start(self):
        if self.running:
            return
        self.aggregator = PrinterAggregator()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [asyncio.create_task(self._run_source(s)) for s in self.sources]
        logger.info("Discovery started with %d source(s)", len(self._tasks))

    async def _run_source(self, source):
        try:
            await source.run(self._queue.put)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Discovery source %s failed", getattr(source, "name", source))

    async def stop(self):
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._queue is not None:
            self.drain()
            self._queue.put_nowait(_STOP)
        logger.info("Discovery stopped with %d printer(s)", len(self.results()))

    def drain(self) -> List[PrinterRecord]:
        """Merge everything already queued without waiting."""
        changed = []
        while self._queue is not None and not self._queue.empty():
            record = self._queue.get_nowait()
            if record is _STOP:
                continue
            merged = self.aggregator.add(record)
            if merged is not None:
                changed.append(merged)
        return changed

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc):
        await self.stop()

    async def __aiter__(self) -> AsyncIterator[PrinterRecord]:
        queue = self._queue
        if queue is None:
            return
        while True:
            record = await queue.get()
            if record is _STOP:
                return
            merged = self.aggregator.add(record)
            if merged is not None:
                yield merged
