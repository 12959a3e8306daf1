import asyncio
import logging
from typing import Callable, Dict, Optional

from print_agent import env
from print_agent.db.stores import PrinterStore
from print_agent.discovery.network import current_network_id, is_port_open
from print_agent.models import PrinterRecord

logger = logging.getLogger(__name__)


class PrinterStatusChecker:
    """
    Marks saved printers online or offline every `interval` seconds.

    A printer is online when it was saved on the current network and its
    port accepts a TCP connection within `timeout` seconds.
    """

    def __init__(
        self,
        printers: PrinterStore,
        interval: float = env.STATUS_CHECK_INTERVAL,
        timeout: float = env.STATUS_CHECK_TIMEOUT,
        network_id_provider: Callable[[], Optional[str]] = current_network_id,
    ):
        self.printers = printers
        self.interval = interval
        self.timeout = timeout
        self.network_id_provider = network_id_provider
        self._task: Optional[asyncio.Task] = None

    async def _is_online(self, printer: PrinterRecord, network_id: Optional[str]) -> bool:
        if printer.network_id != network_id:
            return False
        return await is_port_open(printer.host_address, printer.port, self.timeout)

    async def check_once(self) -> Dict[str, bool]:
        network_id = await asyncio.to_thread(self.network_id_provider)
        printers = self.printers.snapshot()
        results = await asyncio.gather(*(self._is_online(p, network_id) for p in printers))
        statuses = {p.host_address: online for p, online in zip(printers, results)}
        self.printers.set_online(statuses)
        logger.debug("Status check: %d/%d online", sum(results), len(printers))
        return statuses

    async def _run_loop(self):
        while True:
            try:
                await self.check_once()
            except Exception:
                logger.exception("Printer status check failed")
            await asyncio.sleep(self.interval)

    def start(self, loop: asyncio.AbstractEventLoop):
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._run_loop())

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
