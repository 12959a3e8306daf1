from sqlalchemy import JSON, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, mapped_column


class Base(DeclarativeBase):
    pass


class PrinterRow(Base):
    __tablename__ = "printers"

    host_address = mapped_column(String(64), primary_key=True)
    position = mapped_column(Integer, nullable=False, default=0)
    name = mapped_column(String(255), nullable=False)
    port = mapped_column(Integer, nullable=False)
    transport = mapped_column(String(20), default="UNKNOWN")
    properties = mapped_column(JSON, default=dict)
    network_id = mapped_column(String(255), nullable=True)
    driver_ref = mapped_column(String(36), nullable=True)


class DriverRow(Base):
    __tablename__ = "drivers"

    id = mapped_column(String(36), primary_key=True)
    position = mapped_column(Integer, nullable=False, default=0)
    display_name = mapped_column(String(255), nullable=False)
    original_file_name = mapped_column(String(255), nullable=False)
    storage_path = mapped_column(Text, nullable=False)


class JobRow(Base):
    __tablename__ = "print_jobs"

    id = mapped_column(String(36), primary_key=True)
    position = mapped_column(Integer, nullable=False, default=0)
    file_path = mapped_column(Text, nullable=False)
    file_name = mapped_column(String(255), nullable=False)
    printer_name = mapped_column(String(255), default="")
    printer_host_address = mapped_column(String(64), nullable=False)
    printer_port = mapped_column(Integer, nullable=False)
    status = mapped_column(String(20), default="QUEUED")
    enqueued_at = mapped_column(Float, nullable=False)
    selected_options = mapped_column(JSON, default=dict)
    last_error = mapped_column(Text, nullable=True)
