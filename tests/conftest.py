import json

import pytest

from print_agent import env
from print_agent.agent import PrintAgent
from print_agent.db import DriverStore, JobStore, PrinterStore, create_session_factory
from print_agent.models import PrinterRecord, Transport
from print_agent.printers.base import PrinterProvider

SAMPLE_PPD = b"""*PPD-Adobe: "4.3"
*FormatVersion: "4.3"
*ModelName: "Acme Laser 5000"
*NickName: "Acme Laser 5000 PS"
*OpenUI *Duplex/Two-Sided: PickOne
*DefaultDuplex: None
*Duplex None/Off: "<< /Duplex false >> setpagedevice"
*Duplex DuplexNoTumble/Long Edge: "
<< /Duplex true
/Tumble false >>
setpagedevice"
*End
*CloseUI: *Duplex
*OpenUI *InputSlot/Paper Source: PickOne
*DefaultInputSlot: Tray1
*InputSlot Tray1/Tray 1: "<< /MediaPosition 0 >> setpagedevice"
*InputSlot Manual/Manual Feed: ""
*CloseUI: *InputSlot
"""


class FakeProvider(PrinterProvider):
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def print_raw(self, host, port, data):
        if self.error:
            raise RuntimeError(f"Network send error to {host}:{port} -> {self.error}")
        self.sent.append((host, port, data))


@pytest.fixture(autouse=True)
def audit_log(tmp_path, monkeypatch):
    path = tmp_path / "logs" / "audit.jsonl"
    monkeypatch.setattr(env, "AUDIT_LOG_PATH", str(path))
    return path


def read_audit(path):
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


@pytest.fixture
def session_factory(tmp_path):
    return create_session_factory(f"sqlite:///{tmp_path / 'agent.db'}")


@pytest.fixture
def printer_store(session_factory):
    return PrinterStore(session_factory)


@pytest.fixture
def driver_store(session_factory):
    return DriverStore(session_factory)


@pytest.fixture
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def drivers_dir(tmp_path):
    return str(tmp_path / "drivers")


@pytest.fixture
def agent(printer_store, driver_store, job_store, drivers_dir, provider):
    return PrintAgent(
        printers=printer_store,
        driver_store=driver_store,
        jobs=job_store,
        drivers_dir=drivers_dir,
        provider=provider,
        source_factory=lambda: [],
        network_id_provider=lambda: None,
    )


def make_printer(host="10.0.0.5", name=None, transport=Transport.RAW_SOCKET, port=9100, **kw):
    return PrinterRecord(
        name=name or f"Printer @ {host}",
        host_address=host,
        port=port,
        transport=transport,
        **kw,
    )
