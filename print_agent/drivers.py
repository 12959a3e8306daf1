import logging
import os
import uuid
from typing import List, Optional

from print_agent.audit import audit
from print_agent.db.stores import DriverStore, PrinterStore
from print_agent.models import DriverRecord, PpdOption
from print_agent.services import ppd_parser

logger = logging.getLogger(__name__)

PPD_MARKER = b"*PPD-Adobe:"
SNIFF_BYTES = 512
NAME_SCAN_LINES = 200


def looks_like_ppd(file_name: str, head: bytes) -> bool:
    return file_name.lower().endswith(".ppd") or PPD_MARKER in head[:SNIFF_BYTES]


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].strip()
    return value


def read_display_name(data: bytes, fallback: str) -> str:
    """*NickName wins; *ModelName is used when no NickName appears early in the file."""
    model_name = None
    lines = data.decode("utf-8", errors="replace").splitlines()
    for line in lines[:NAME_SCAN_LINES]:
        line = line.strip()
        if line.lower().startswith("*nickname:"):
            return _unquote(line.split(":", 1)[1]) or fallback
        if model_name is None and line.lower().startswith("*modelname:"):
            model_name = _unquote(line.split(":", 1)[1])
    return model_name or fallback


class DriverLibrary:
    """
    Imported PPD files on disk plus their DriverRecords.

    Files are copied into drivers_dir under a generated name so two vendors
    shipping the same file name never collide.
    """

    def __init__(self, store: DriverStore, printers: PrinterStore, drivers_dir: str):
        self.store = store
        self.printers = printers
        self.drivers_dir = drivers_dir
        os.makedirs(drivers_dir, exist_ok=True)

    def list(self):
        return self.store.snapshot()

    def get(self, driver_id: str) -> Optional[DriverRecord]:
        return self.store.get(driver_id)

    def is_imported(self, original_file_name: str) -> bool:
        wanted = original_file_name.lower()
        return any(d.original_file_name.lower() == wanted for d in self.store.snapshot())

    # -----------------------------
    # Import
    # -----------------------------
    def import_driver(self, data: bytes, original_name: str) -> DriverRecord:
        original_name = os.path.basename(original_name)
        if not looks_like_ppd(original_name, data):
            raise ValueError(f"{original_name} is not a PPD file")

        driver_id = str(uuid.uuid4())
        storage_path = os.path.join(self.drivers_dir, f"{driver_id}.ppd")
        with open(storage_path, "wb") as f:
            f.write(data)

        record = DriverRecord(
            id=driver_id,
            display_name=read_display_name(data, original_name),
            original_file_name=original_name,
            storage_path=storage_path,
        )
        self.store.add(record)
        logger.info("Imported driver %s (%s)", record.display_name, original_name)
        audit("driver_imported", {"driver_id": driver_id, "name": record.display_name,
                                  "file": original_name})
        return record

    def import_directory(self, path: str) -> int:
        """
        Import every PPD found under path, skipping names already imported.

        A missing or empty directory imports nothing.
        """
        imported = 0
        for root, _, files in os.walk(path):
            for file_name in sorted(files):
                full_path = os.path.join(root, file_name)
                if self.is_imported(file_name):
                    logger.debug("Driver %s already imported, skipping", file_name)
                    continue
                try:
                    with open(full_path, "rb") as f:
                        head = f.read(SNIFF_BYTES)
                    if not looks_like_ppd(file_name, head):
                        continue
                    with open(full_path, "rb") as f:
                        self.import_driver(f.read(), file_name)
                    imported += 1
                except OSError as e:
                    logger.warning("Could not import %s: %s", full_path, e)
        logger.info("Imported %d driver(s) from %s", imported, path)
        return imported

    # -----------------------------
    # Removal
    # -----------------------------
    def _delete_file(self, record: DriverRecord):
        try:
            os.remove(record.storage_path)
        except FileNotFoundError:
            logger.debug("Driver file %s already gone", record.storage_path)

    def remove_driver(self, driver_id: str) -> bool:
        removed = self.store.remove([driver_id])
        for record in removed:
            self._delete_file(record)
            audit("driver_removed", {"driver_id": record.id, "name": record.display_name})
        return bool(removed)

    def remove_all(self) -> int:
        count = len(self.store.snapshot())
        for entry in os.scandir(self.drivers_dir):
            if entry.is_file():
                os.remove(entry.path)
        self.store.clear()
        audit("drivers_removed", {"count": count, "mode": "all"})
        return count

    def remove_unused(self) -> int:
        in_use = self.printers.referenced_driver_ids()
        unused = [d.id for d in self.store.snapshot() if d.id not in in_use]
        removed = self.store.remove(unused)
        for record in removed:
            self._delete_file(record)
        if removed:
            audit("drivers_removed", {"count": len(removed), "mode": "unused"})
        return len(removed)

    # -----------------------------
    # Options
    # -----------------------------
    def parse_driver(self, storage_path: str) -> List[PpdOption]:
        """Driver options plus PageSize, Orientation and Copies, sorted by display order."""
        with open(storage_path, "rb") as f:
            options = ppd_parser.parse(f)
        return ppd_parser.with_synthetic_options(options)
