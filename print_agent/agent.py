"""
The print agent process: owns the stores, the queue worker, the status
checker and the discovery session.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional

from print_agent import env
from print_agent.audit import audit
from print_agent.db import DriverStore, JobStore, PrinterStore, create_session_factory
from print_agent.discovery import DiscoverySession, MdnsBrowser, SubnetScanner
from print_agent.discovery.network import current_network_id
from print_agent.discovery.snmp import SnmpClient
from print_agent.drivers import DriverLibrary
from print_agent.models import DriverRecord, PpdOption, PrinterRecord, PrintJob
from print_agent.printers import default_provider
from print_agent.printers.base import PrinterProvider
from print_agent.queue_worker import JobQueue
from print_agent.services.ipp_client import IppClient
from print_agent.status_checker import PrinterStatusChecker

logger = logging.getLogger(__name__)


class PrintAgent:
    def __init__(
        self,
        printers: PrinterStore,
        driver_store: DriverStore,
        jobs: JobStore,
        drivers_dir: str,
        provider: PrinterProvider,
        source_factory: Optional[Callable[[], List]] = None,
        network_id_provider: Callable[[], Optional[str]] = current_network_id,
        poll_interval: float = env.WORKER_POLL_INTERVAL,
    ):
        self.printers = printers
        self.driver_store = driver_store
        self.jobs = jobs
        self.library = DriverLibrary(driver_store, printers, drivers_dir)
        self.queue = JobQueue(jobs, printers, self.library, provider, poll_interval=poll_interval)
        self.status_checker = PrinterStatusChecker(printers, network_id_provider=network_id_provider)
        self.network_id_provider = network_id_provider
        self.ipp_client = IppClient()
        self.snmp_client = SnmpClient()
        self.source_factory = source_factory or self._default_sources
        self.discovery: Optional[DiscoverySession] = None
        self._discovery_consumer: Optional[asyncio.Task] = None

    @classmethod
    def from_env(cls) -> "PrintAgent":
        session_factory = create_session_factory(env.DATABASE_URL)
        return cls(
            printers=PrinterStore(session_factory),
            driver_store=DriverStore(session_factory),
            jobs=JobStore(session_factory),
            drivers_dir=env.DRIVERS_DIR,
            provider=default_provider(),
        )

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def load(self):
        self.printers.load()
        self.driver_store.load()
        self.queue.recover()

    async def start(self):
        self.load()
        loop = asyncio.get_running_loop()
        self.queue.start(loop)
        self.status_checker.start(loop)
        audit("agent_startup", {"agent_id": env.AGENT_ID, "name": env.AGENT_NAME})
        logger.info("Agent %s started", env.AGENT_ID)

    async def shutdown(self):
        await self.stop_discovery()
        await self.queue.stop()
        await self.status_checker.stop()
        self.ipp_client.close()
        self.snmp_client.close()

    def get_state(self) -> Dict:
        return {
            **self.queue.get_state(),
            "discovery_running": self.discovery is not None and self.discovery.running,
        }

    # -----------------------------
    # Discovery
    # -----------------------------
    def _default_sources(self) -> List:
        network_id = self.network_id_provider()
        return [
            SubnetScanner(ipp_client=self.ipp_client, snmp_client=self.snmp_client,
                          network_id=network_id),
            MdnsBrowser(network_id=network_id),
        ]

    async def _consume(self, session: DiscoverySession):
        async for record in session:
            logger.info("Discovered %s at %s:%s (%s)", record.name, record.host_address,
                        record.port, record.transport.value)

    async def start_discovery(self) -> DiscoverySession:
        if self.discovery is not None and self.discovery.running:
            return self.discovery
        await self.stop_discovery()

        sources = await asyncio.to_thread(self.source_factory)
        self.discovery = DiscoverySession(sources)
        await self.discovery.start()
        self._discovery_consumer = asyncio.create_task(self._consume(self.discovery))
        audit("discovery_started", {"sources": [getattr(s, "name", str(s)) for s in sources]})
        return self.discovery

    async def stop_discovery(self) -> bool:
        session, consumer = self.discovery, self._discovery_consumer
        self._discovery_consumer = None
        if session is None or consumer is None:
            return False
        await session.stop()
        await consumer
        audit("discovery_stopped", {"printers": len(session.results())})
        return True

    def discovered_printers(self) -> List[PrinterRecord]:
        if self.discovery is None:
            return []
        return list(self.discovery.results())

    # -----------------------------
    # Printers, drivers, jobs
    # -----------------------------
    def save_printer(self, record: PrinterRecord) -> PrinterRecord:
        return self.printers.save(record)

    def assign_driver(self, host_address: str, driver_id: Optional[str]) -> PrinterRecord:
        if driver_id is not None and self.library.get(driver_id) is None:
            raise ValueError(f"Unknown driver {driver_id}")
        return self.printers.assign_driver(host_address, driver_id)

    def import_driver(self, data: bytes, original_name: str) -> DriverRecord:
        return self.library.import_driver(data, original_name)

    def import_drivers_from_directory(self, path: str) -> int:
        return self.library.import_directory(path)

    def parse_driver(self, driver_path: str) -> List[PpdOption]:
        return self.library.parse_driver(driver_path)

    def enqueue_job(self, file_path: str, printer_host: str, options: Dict[str, str],
                    file_name: Optional[str] = None) -> PrintJob:
        return self.queue.enqueue(file_path, printer_host, options, file_name=file_name)

    def generate_and_send(self, job: PrintJob, printer: PrinterRecord,
                          driver: DriverRecord) -> bool:
        return self.queue.generate_and_send(job, printer, driver)
