from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
import time
import uuid

GENERIC_NAME_PREFIX = "Printer @ "


class Transport(str, Enum):
    IPP = "IPP"
    RAW_SOCKET = "RAW_SOCKET"
    UNKNOWN = "UNKNOWN"


class PrintJobStatus(str, Enum):
    QUEUED = "QUEUED"
    PRINTING = "PRINTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({PrintJobStatus.COMPLETED, PrintJobStatus.FAILED})


class PrinterRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    host_address: str  # identity
    port: int
    transport: Transport = Transport.UNKNOWN
    properties: Dict[str, str] = Field(default_factory=dict)
    network_id: Optional[str] = None
    driver_ref: Optional[str] = None
    online: bool = False  # transient, never persisted

    @property
    def has_generic_name(self) -> bool:
        return self.name.startswith(GENERIC_NAME_PREFIX)


def generic_printer_name(host: str) -> str:
    return f"{GENERIC_NAME_PREFIX}{host}"


class DriverRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    display_name: str
    original_file_name: str
    storage_path: str


class PpdChoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    keyword: str
    display_name: str
    invocation_code: str = ""


class PpdOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    keyword: str
    display_name: str
    default_choice: str = ""
    display_order: int = 100  # lower sorts first
    choices: List[PpdChoice] = Field(default_factory=list)

    def find_choice(self, keyword: str) -> Optional[PpdChoice]:
        wanted = keyword.lower()
        return next((c for c in self.choices if c.keyword.lower() == wanted), None)


class PrintJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    file_path: str
    file_name: str
    printer_name: str = ""
    printer_host_address: str
    printer_port: int
    status: PrintJobStatus = PrintJobStatus.QUEUED
    enqueued_at: float = Field(default_factory=lambda: time.time())
    # keyword -> choice keyword; PageSize, Orientation and Copies plus driver-defined keys
    selected_options: Dict[str, str] = Field(default_factory=dict)
    last_error: Optional[str] = None


# -----------------------------
# API payloads
# -----------------------------
class PrintJobIn(BaseModel):
    file_path: str
    file_name: Optional[str] = None
    printer_host: str
    options: Dict[str, str] = Field(default_factory=dict)


class DriverUpload(BaseModel):
    file_name: str
    content_base64: str


class DriverDirectory(BaseModel):
    path: str


class DriverAssignment(BaseModel):
    driver_id: Optional[str] = None
