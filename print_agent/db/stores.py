"""
Snapshot stores for printers, drivers and jobs.

Readers get an immutable tuple and never lock. Writers take the store lock,
build a new tuple, rewrite the table and swap the tuple in.
"""
import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, select

from print_agent.db.models import DriverRow, JobRow, PrinterRow
from print_agent.models import (
    TERMINAL_STATUSES,
    DriverRecord,
    PrinterRecord,
    PrintJob,
    PrintJobStatus,
    Transport,
)

logger = logging.getLogger(__name__)


class SnapshotStore:
    row_type = None

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self._items: Tuple = ()

    # -----------------------------
    # hooks
    # -----------------------------
    def _to_model(self, row):
        raise NotImplementedError

    def _to_row(self, item, position: int):
        raise NotImplementedError

    # -----------------------------
    def load(self) -> Tuple:
        with self._session_factory() as db:
            rows = db.execute(
                select(self.row_type).order_by(self.row_type.position)
            ).scalars().all()
            items = tuple(self._to_model(r) for r in rows)
        with self._lock:
            self._items = items
        logger.debug("Loaded %d rows from %s", len(items), self.row_type.__tablename__)
        return items

    def snapshot(self) -> Tuple:
        return self._items

    def _persist(self, items: Tuple):
        with self._session_factory() as db:
            db.execute(delete(self.row_type))
            db.add_all([self._to_row(item, i) for i, item in enumerate(items)])
            db.commit()

    def _replace(self, items: Iterable):
        # caller holds self._lock
        items = tuple(items)
        self._persist(items)
        self._items = items


class PrinterStore(SnapshotStore):
    row_type = PrinterRow

    def _to_model(self, row: PrinterRow) -> PrinterRecord:
        return PrinterRecord(
            name=row.name,
            host_address=row.host_address,
            port=row.port,
            transport=Transport(row.transport or Transport.UNKNOWN.value),
            properties=dict(row.properties or {}),
            network_id=row.network_id,
            driver_ref=row.driver_ref,
        )

    def _to_row(self, item: PrinterRecord, position: int) -> PrinterRow:
        return PrinterRow(
            host_address=item.host_address,
            position=position,
            name=item.name,
            port=item.port,
            transport=item.transport.value,
            properties=dict(item.properties),
            network_id=item.network_id,
            driver_ref=item.driver_ref,
        )

    def get(self, host_address: str) -> Optional[PrinterRecord]:
        return next((p for p in self._items if p.host_address == host_address), None)

    def save(self, record: PrinterRecord) -> PrinterRecord:
        """Insert, or merge into the saved printer with the same host address."""
        with self._lock:
            items = list(self._items)
            for i, old in enumerate(items):
                if old.host_address != record.host_address:
                    continue
                merged = old.model_copy(update={
                    "name": record.name,
                    "port": record.port,
                    "transport": record.transport,
                    "driver_ref": record.driver_ref,
                    "network_id": record.network_id if record.network_id is not None else old.network_id,
                    "properties": {**old.properties, **record.properties},
                })
                items[i] = merged
                self._replace(items)
                return merged

            items.append(record)
            self._replace(items)
            return record

    def remove(self, host_address: str) -> bool:
        with self._lock:
            items = [p for p in self._items if p.host_address != host_address]
            if len(items) == len(self._items):
                return False
            self._replace(items)
            return True

    def assign_driver(self, host_address: str, driver_id: Optional[str]) -> PrinterRecord:
        with self._lock:
            items = list(self._items)
            for i, p in enumerate(items):
                if p.host_address == host_address:
                    items[i] = p.model_copy(update={"driver_ref": driver_id})
                    self._replace(items)
                    return items[i]
        raise ValueError(f"Unknown printer {host_address}")

    def set_online(self, statuses: Dict[str, bool]):
        """Online state is transient: swap the snapshot without touching the table."""
        with self._lock:
            self._items = tuple(
                p.model_copy(update={"online": statuses[p.host_address]})
                if p.host_address in statuses else p
                for p in self._items
            )

    def referenced_driver_ids(self) -> set:
        return {p.driver_ref for p in self._items if p.driver_ref}


class DriverStore(SnapshotStore):
    row_type = DriverRow

    def _to_model(self, row: DriverRow) -> DriverRecord:
        return DriverRecord(
            id=row.id,
            display_name=row.display_name,
            original_file_name=row.original_file_name,
            storage_path=row.storage_path,
        )

    def _to_row(self, item: DriverRecord, position: int) -> DriverRow:
        return DriverRow(
            id=item.id,
            position=position,
            display_name=item.display_name,
            original_file_name=item.original_file_name,
            storage_path=item.storage_path,
        )

    def get(self, driver_id: str) -> Optional[DriverRecord]:
        return next((d for d in self._items if d.id == driver_id), None)

    def add(self, record: DriverRecord) -> DriverRecord:
        with self._lock:
            self._replace(self._items + (record,))
        return record

    def remove(self, driver_ids: Iterable[str]) -> List[DriverRecord]:
        ids = set(driver_ids)
        with self._lock:
            removed = [d for d in self._items if d.id in ids]
            if removed:
                self._replace(d for d in self._items if d.id not in ids)
        return removed

    def clear(self):
        with self._lock:
            self._replace(())


class JobStore(SnapshotStore):
    row_type = JobRow

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.recovered_ids: Tuple[str, ...] = ()

    def _to_model(self, row: JobRow) -> PrintJob:
        return PrintJob(
            id=row.id,
            file_path=row.file_path,
            file_name=row.file_name,
            printer_name=row.printer_name or "",
            printer_host_address=row.printer_host_address,
            printer_port=row.printer_port,
            status=PrintJobStatus(row.status),
            enqueued_at=row.enqueued_at,
            selected_options=dict(row.selected_options or {}),
            last_error=row.last_error,
        )

    def _to_row(self, item: PrintJob, position: int) -> JobRow:
        return JobRow(
            id=item.id,
            position=position,
            file_path=item.file_path,
            file_name=item.file_name,
            printer_name=item.printer_name,
            printer_host_address=item.printer_host_address,
            printer_port=item.printer_port,
            status=item.status.value,
            enqueued_at=item.enqueued_at,
            selected_options=dict(item.selected_options),
            last_error=item.last_error,
        )

    def load(self) -> Tuple[PrintJob, ...]:
        """
        Load jobs and reset any job left in PRINTING back to QUEUED.

        A PRINTING job on disk belongs to a run that never recorded its
        outcome, so it is retried. The ids reset are kept in recovered_ids.
        """
        super().load()
        with self._lock:
            recovered = tuple(j.id for j in self._items if j.status == PrintJobStatus.PRINTING)
            if recovered:
                self._replace(
                    j.model_copy(update={"status": PrintJobStatus.QUEUED})
                    if j.status == PrintJobStatus.PRINTING else j
                    for j in self._items
                )
                logger.warning("Reset %d interrupted job(s) to QUEUED", len(recovered))
            self.recovered_ids = recovered
        return self._items

    def get(self, job_id: str) -> Optional[PrintJob]:
        return next((j for j in self._items if j.id == job_id), None)

    def add(self, job: PrintJob) -> PrintJob:
        with self._lock:
            self._replace(self._items + (job,))
        return job

    def first_queued(self) -> Optional[PrintJob]:
        return next((j for j in self._items if j.status == PrintJobStatus.QUEUED), None)

    def update(self, job_id: str, **changes) -> PrintJob:
        with self._lock:
            items = list(self._items)
            for i, j in enumerate(items):
                if j.id == job_id:
                    items[i] = j.model_copy(update=changes)
                    self._replace(items)
                    return items[i]
        raise ValueError(f"Unknown job {job_id}")

    def clear_finished(self) -> int:
        with self._lock:
            kept = [j for j in self._items if j.status not in TERMINAL_STATUSES]
            removed = len(self._items) - len(kept)
            if removed:
                self._replace(kept)
        return removed
