from abc import ABC, abstractmethod


class PrinterProvider(ABC):

    @abstractmethod
    def print_raw(self, host: str, port: int, data: bytes):
        """Deliver a complete print stream. Raises RuntimeError on failure."""
        pass
