import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from print_agent import env
from print_agent.discovery.network import is_port_open, local_subnet_prefix
from print_agent.discovery.snmp import SnmpClient
from print_agent.models import PrinterRecord, Transport, generic_printer_name
from print_agent.services.ipp_client import IppClient, is_successful

logger = logging.getLogger(__name__)

RAW_PORT = 9100
IPP_PORT = 631


class SubnetScanner:
    """
    Active probe of x.y.z.1-254 on ports 9100 and 631.

    A host open on 9100 yields a RAW_SOCKET record. A host open on 631 yields
    an IPP record only if Get-Printer-Attributes answers successful-ok.
    """

    name = "scan"

    def __init__(
        self,
        subnet_prefix: Optional[str] = None,
        ipp_client: Optional[IppClient] = None,
        snmp_client: Optional[SnmpClient] = None,
        network_id: Optional[str] = None,
        concurrency: int = env.SCAN_CONCURRENCY,
        port_timeout: float = env.SCAN_PORT_TIMEOUT,
    ):
        self.subnet_prefix = subnet_prefix
        self.ipp_client = ipp_client or IppClient()
        self.snmp_client = snmp_client or SnmpClient()
        self.network_id = network_id
        self.concurrency = concurrency
        self.port_timeout = port_timeout

    async def run(self, put: Callable[[PrinterRecord], Awaitable]):
        prefix = self.subnet_prefix or local_subnet_prefix(env.SCAN_SUBNET)
        if not prefix:
            logger.warning("No local subnet found, skipping active scan")
            return

        logger.info("Scanning %s.1-254 (concurrency=%d)", prefix, self.concurrency)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def probe(suffix: int):
            host = f"{prefix}.{suffix}"
            async with semaphore:
                try:
                    records = await self.probe_host(host)
                except Exception as e:
                    logger.debug("Probe of %s failed: %s", host, e)
                    return
            for record in records:
                await put(record)

        await asyncio.gather(*(probe(i) for i in range(1, 255)))
        logger.info("Scan of %s.0/24 finished", prefix)

    async def probe_host(self, host: str) -> List[PrinterRecord]:
        raw_open = await is_port_open(host, RAW_PORT, self.port_timeout)
        ipp_open = await is_port_open(host, IPP_PORT, self.port_timeout)
        if not (raw_open or ipp_open):
            return []

        sys_descr = await self.snmp_client.get_sys_descr(host)
        snmp_props = {"snmp_sysDescr": sys_descr} if sys_descr else {}
        base_name = sys_descr or generic_printer_name(host)

        records = []
        if raw_open:
            records.append(PrinterRecord(
                name=base_name,
                host_address=host,
                port=RAW_PORT,
                transport=Transport.RAW_SOCKET,
                properties=snmp_props,
                network_id=self.network_id,
            ))

        if ipp_open:
            uri = f"http://{host}:{IPP_PORT}/ipp/print"
            attributes = await asyncio.to_thread(self.ipp_client.get_printer_attributes, uri)
            if is_successful(attributes):
                records.append(PrinterRecord(
                    name=attributes.get("printer-make-and-model") or base_name,
                    host_address=host,
                    port=IPP_PORT,
                    transport=Transport.IPP,
                    properties={**snmp_props, **attributes},
                    network_id=self.network_id,
                ))

        return records
