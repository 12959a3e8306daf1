"""
Passive printer discovery over multicast DNS.

zeroconf resolves services on its own threads; resolved printers are pushed
onto the event loop through the `put` coroutine handed to MdnsBrowser.run.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from zeroconf import IPVersion, ServiceBrowser, ServiceListener, Zeroconf

from print_agent import env
from print_agent.models import PrinterRecord, Transport

logger = logging.getLogger(__name__)

SERVICE_TYPES = [
    "_ipp._tcp.local.",
    "_ipps._tcp.local.",
    "_pdl-datastream._tcp.local.",
    "_printer._tcp.local.",
]


def transport_for_service(service_type: str) -> Optional[Transport]:
    if "_ipp" in service_type:
        return Transport.IPP
    if "_pdl-datastream" in service_type or "_printer" in service_type:
        return Transport.RAW_SOCKET
    return None


def decode_txt_record(data: bytes) -> Dict[str, str]:
    """
    Decode a DNS-SD TXT payload of length-prefixed "key=value" entries.

    A zero length ends the record. An entry without "=" is a flag and maps
    to "". An entry running past the end of the buffer stops decoding.
    """
    props: Dict[str, str] = {}
    i = 0
    while i < len(data):
        length = data[i]
        i += 1
        if length == 0:
            break
        if i + length > len(data):
            logger.warning("TXT entry of %d bytes overruns record, stopping", length)
            break
        entry = data[i:i + length].decode("utf-8", errors="replace")
        i += length
        key, _, value = entry.partition("=")
        if key:
            props[key] = value
    return props


def _strip_parentheses(value: str) -> str:
    if value.startswith("(") and value.endswith(")"):
        return value[1:-1].strip()
    return value


def printer_display_name(props: Dict[str, str], service_name: str, service_type: str) -> str:
    product = _strip_parentheses(props.get("product", "").strip())
    if product:
        return product
    ty = props.get("ty", "").strip()
    if ty:
        return ty
    suffix = "." + service_type
    if service_name.endswith(suffix):
        return service_name[:-len(suffix)]
    return service_name


def service_to_printer(
    service_type: str,
    service_name: str,
    addresses: Iterable[str],
    port: int,
    txt: bytes,
    network_id: Optional[str] = None,
) -> Optional[PrinterRecord]:
    transport = transport_for_service(service_type)
    if transport is None:
        return None

    host = next((a for a in addresses if ":" not in a), None)
    if host is None:
        logger.debug("No IPv4 address for %s", service_name)
        return None

    props = decode_txt_record(txt)
    props["raw_txt_data"] = " ".join(str(b) for b in txt)

    return PrinterRecord(
        name=printer_display_name(props, service_name, service_type),
        host_address=host,
        port=port,
        transport=transport,
        properties=props,
        network_id=network_id,
    )


class MdnsPrinterListener(ServiceListener):
    def __init__(self, emit: Callable[[PrinterRecord], None],
                 network_id: Optional[str] = None,
                 resolve_timeout: int = env.MDNS_RESOLVE_TIMEOUT):
        self.emit = emit
        self.network_id = network_id
        self.resolve_timeout = resolve_timeout

    def add_service(self, zc: Zeroconf, service_type: str, name: str) -> None:
        self._resolve(zc, service_type, name)

    def update_service(self, zc: Zeroconf, service_type: str, name: str) -> None:
        self._resolve(zc, service_type, name)

    def remove_service(self, zc: Zeroconf, service_type: str, name: str) -> None:
        logger.debug("Service removed: %s", name)

    def _resolve(self, zc: Zeroconf, service_type: str, name: str):
        try:
            info = zc.get_service_info(service_type, name, timeout=self.resolve_timeout)
        except Exception as e:
            logger.warning("Could not resolve %s: %s", name, e)
            return
        if not info:
            return

        record = service_to_printer(
            service_type, name, info.parsed_addresses(), info.port or 0,
            info.text or b"", self.network_id,
        )
        if record is not None:
            self.emit(record)


def _default_zeroconf() -> Zeroconf:
    return Zeroconf(ip_version=IPVersion.V4Only)


class MdnsBrowser:
    """Browses the printer service types until cancelled."""

    name = "mdns"

    def __init__(self, network_id: Optional[str] = None,
                 service_types: List[str] = None,
                 resolve_timeout: int = env.MDNS_RESOLVE_TIMEOUT,
                 zeroconf_factory: Callable[[], Zeroconf] = _default_zeroconf):
        self.network_id = network_id
        self.service_types = service_types or SERVICE_TYPES
        self.resolve_timeout = resolve_timeout
        self.zeroconf_factory = zeroconf_factory

    async def run(self, put: Callable[[PrinterRecord], Awaitable]):
        loop = asyncio.get_running_loop()

        def emit(record: PrinterRecord):
            asyncio.run_coroutine_threadsafe(put(record), loop)

        listener = MdnsPrinterListener(emit, self.network_id, self.resolve_timeout)
        zc = await asyncio.to_thread(self.zeroconf_factory)
        browsers = []
        try:
            for service_type in self.service_types:
                browsers.append(ServiceBrowser(zc, service_type, listener))
            logger.info("Browsing %d mDNS service types", len(browsers))
            await loop.create_future()  # until cancelled
        finally:
            await asyncio.to_thread(self._close, zc, browsers)

    @staticmethod
    def _close(zc: Zeroconf, browsers: List[ServiceBrowser]):
        for browser in browsers:
            browser.cancel()
        zc.close()
        logger.info("mDNS browser closed")
