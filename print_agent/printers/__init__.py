from print_agent import env
from print_agent.printers.base import PrinterProvider
from print_agent.printers.network import RawSocketProvider


def default_provider() -> PrinterProvider:
    return RawSocketProvider(timeout=env.PRINT_WRITE_TIMEOUT)
