import logging
import socket

from print_agent.printers.base import PrinterProvider

logger = logging.getLogger(__name__)


class RawSocketProvider(PrinterProvider):
    """Writes the stream in one shot to the printer's raw port (9100 by default)."""

    def __init__(self, timeout: float = 60):
        self.timeout = timeout

    def print_raw(self, host: str, port: int, data: bytes):
        try:
            with socket.create_connection((host, port), timeout=self.timeout) as s:
                s.sendall(data)
        except OSError as e:
            raise RuntimeError(f"Network send error to {host}:{port} -> {e}")
        logger.info("Sent %d bytes to %s:%s", len(data), host, port)
