import asyncio
import logging
import os
from typing import Dict, Optional

from print_agent import env
from print_agent.audit import audit
from print_agent.db.stores import JobStore, PrinterStore
from print_agent.drivers import DriverLibrary
from print_agent.models import DriverRecord, PrinterRecord, PrintJob, PrintJobStatus
from print_agent.printers.base import PrinterProvider
from print_agent.services import ps_stream

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Sequential print queue: QUEUED -> PRINTING -> COMPLETED | FAILED.

    One worker polls every poll_interval seconds and runs at most one job per
    tick to completion. Only this class changes a job's status.
    """

    def __init__(
        self,
        jobs: JobStore,
        printers: PrinterStore,
        drivers: DriverLibrary,
        provider: PrinterProvider,
        poll_interval: float = env.WORKER_POLL_INTERVAL,
        page_language: str = env.PAGE_LANGUAGE,
        raw_port: int = env.RAW_PRINT_PORT,
    ):
        self.jobs = jobs
        self.printers = printers
        self.drivers = drivers
        self.provider = provider
        self.poll_interval = poll_interval
        self.page_language = page_language
        self.raw_port = raw_port
        self._worker_task: Optional[asyncio.Task] = None
        self._is_running = False

    def get_state(self) -> Dict:
        jobs = self.jobs.snapshot()
        counts = {s.value: 0 for s in PrintJobStatus}
        for job in jobs:
            counts[job.status.value] += 1
        return {
            "queue_len": counts[PrintJobStatus.QUEUED.value],
            "jobs_total": len(jobs),
            "jobs_by_status": counts,
            "running": self._is_running,
        }

    def recover(self):
        """Load jobs from storage; interrupted jobs come back as QUEUED."""
        loaded = self.jobs.load()
        if self.jobs.recovered_ids:
            audit("jobs_recovered", {"job_ids": list(self.jobs.recovered_ids)})
        return loaded

    def enqueue(self, file_path: str, printer_host: str,
                options: Dict[str, str], file_name: Optional[str] = None) -> PrintJob:
        printer = self.printers.get(printer_host)
        if printer is None:
            raise ValueError(f"Unknown printer {printer_host}")
        if not printer.driver_ref:
            raise ValueError(f"Printer {printer.name} has no driver assigned")

        job = PrintJob(
            file_path=file_path,
            file_name=file_name or os.path.basename(file_path),
            printer_name=printer.name,
            printer_host_address=printer.host_address,
            printer_port=printer.port,
            selected_options=dict(options),
        )
        self.jobs.add(job)
        audit("job_queued", {"job_id": job.id, "printer": printer.host_address,
                             "file": job.file_name})
        return job

    def clear_history(self) -> int:
        removed = self.jobs.clear_finished()
        if removed:
            audit("jobs_cleared", {"count": removed})
        return removed

    # -----------------------------
    # Execution
    # -----------------------------
    def _deliver(self, job: PrintJob, printer: PrinterRecord, driver: DriverRecord):
        if os.path.isfile(driver.storage_path):
            options = self.drivers.parse_driver(driver.storage_path)
        else:
            logger.warning("Driver file %s missing, printing without driver features",
                           driver.storage_path)
            options = []

        with open(job.file_path, "rb") as f:
            data = f.read()

        stream = ps_stream.generate(options, job.selected_options, job.file_name,
                                    self.page_language, data)
        self.provider.print_raw(printer.host_address, self.raw_port, stream)

    def generate_and_send(self, job: PrintJob, printer: PrinterRecord,
                          driver: DriverRecord) -> bool:
        try:
            self._deliver(job, printer, driver)
            return True
        except Exception as e:
            logger.error("Job %s failed on %s: %s", job.id, printer.host_address, e)
            return False

    def _fail(self, job: PrintJob, error: str) -> PrintJob:
        logger.error("Job %s failed: %s", job.id, error)
        job = self.jobs.update(job.id, status=PrintJobStatus.FAILED, last_error=error)
        audit("job_failed", {"job_id": job.id, "error": error})
        return job

    def process_next(self) -> Optional[PrintJob]:
        """Run the first QUEUED job to completion. Returns it, or None when idle."""
        job = self.jobs.first_queued()
        if job is None:
            return None

        job = self.jobs.update(job.id, status=PrintJobStatus.PRINTING, last_error=None)
        audit("job_printing", {"job_id": job.id})

        printer = self.printers.get(job.printer_host_address)
        if printer is None:
            return self._fail(job, f"Printer {job.printer_host_address} not found")
        if not os.path.isfile(job.file_path):
            return self._fail(job, f"File {job.file_path} not found")
        driver = self.drivers.get(printer.driver_ref) if printer.driver_ref else None
        if driver is None:
            return self._fail(job, f"No driver assigned to printer {printer.name}")

        try:
            self._deliver(job, printer, driver)
        except Exception as e:
            return self._fail(job, str(e))

        job = self.jobs.update(job.id, status=PrintJobStatus.COMPLETED)
        logger.info("Job %s printed on %s", job.id, printer.host_address)
        audit("job_done", {"job_id": job.id})
        return job

    async def _run_loop(self):
        self._is_running = True
        try:
            while True:
                try:
                    await asyncio.to_thread(self.process_next)
                except Exception:
                    logger.exception("Queue worker tick failed")
                await asyncio.sleep(self.poll_interval)
        finally:
            self._is_running = False

    def start(self, loop: asyncio.AbstractEventLoop):
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = loop.create_task(self._run_loop())

    async def stop(self):
        task, self._worker_task = self._worker_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
