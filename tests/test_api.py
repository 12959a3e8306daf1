import base64
import time

import pytest
from conftest import SAMPLE_PPD, make_printer
from fastapi.testclient import TestClient

from print_agent import env
from print_agent.api import create_app
from print_agent.models import Transport

TOKEN = "test-token"
HEADERS = {"X-Agent-Token": TOKEN}


@pytest.fixture
def client(agent, monkeypatch):
    monkeypatch.setattr(env, "PRINT_AGENT_TOKEN", TOKEN)
    return TestClient(create_app(agent))


def upload(client, name="acme.ppd", data=SAMPLE_PPD):
    return client.post("/drivers", headers=HEADERS, json={
        "file_name": name,
        "content_base64": base64.b64encode(data).decode(),
    })


def test_health_is_public(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_token_is_required(client):
    assert client.get("/printers", headers={"X-Agent-Token": "wrong"}).status_code == 401
    assert client.get("/printers").status_code == 422


def test_unconfigured_token_is_server_error(client, monkeypatch):
    monkeypatch.setattr(env, "PRINT_AGENT_TOKEN", "")
    assert client.get("/printers", headers=HEADERS).status_code == 500


def test_printer_crud(client):
    printer = make_printer(name="Acme", properties={"k": "v"}).model_dump(mode="json")
    r = client.post("/printers", headers=HEADERS, json=printer)
    assert r.status_code == 200

    r = client.get("/printers", headers=HEADERS)
    assert [p["host_address"] for p in r.json()] == ["10.0.0.5"]

    assert client.delete("/printers/10.0.0.5", headers=HEADERS).status_code == 200
    assert client.delete("/printers/10.0.0.5", headers=HEADERS).status_code == 404


def test_driver_upload_and_options(client):
    r = upload(client)
    assert r.status_code == 200
    driver = r.json()
    assert driver["display_name"] == "Acme Laser 5000 PS"

    r = client.get(f"/drivers/{driver['id']}/options", headers=HEADERS)
    assert [o["keyword"] for o in r.json()] == ["PageSize", "Orientation", "Copies", "Duplex", "InputSlot"]

    assert [d["id"] for d in client.get("/drivers", headers=HEADERS).json()] == [driver["id"]]
    assert client.get("/drivers/nope/options", headers=HEADERS).status_code == 404


def test_driver_upload_rejections(client):
    assert upload(client, name="manual.pdf", data=b"%PDF-1.7").status_code == 400
    r = client.post("/drivers", headers=HEADERS, json={"file_name": "a.ppd", "content_base64": "***"})
    assert r.status_code == 400


def test_driver_removal_endpoints(client):
    used = upload(client, name="used.ppd").json()
    upload(client, name="spare.ppd")
    client.post("/printers", headers=HEADERS, json=make_printer().model_dump(mode="json"))
    client.put("/printers/10.0.0.5/driver", headers=HEADERS, json={"driver_id": used["id"]})

    assert client.post("/drivers/cleanup", headers=HEADERS).json()["removed"] == 1
    assert client.delete(f"/drivers/{used['id']}", headers=HEADERS).status_code == 200
    assert client.delete(f"/drivers/{used['id']}", headers=HEADERS).status_code == 404

    upload(client, name="again.ppd")
    assert client.delete("/drivers", headers=HEADERS).json()["removed"] == 1
    assert client.get("/drivers", headers=HEADERS).json() == []


def test_assign_driver_validation(client):
    client.post("/printers", headers=HEADERS, json=make_printer().model_dump(mode="json"))
    r = client.put("/printers/10.0.0.5/driver", headers=HEADERS, json={"driver_id": "missing"})
    assert r.status_code == 400
    r = client.put("/printers/10.9.9.9/driver", headers=HEADERS, json={"driver_id": None})
    assert r.status_code == 404


def test_job_flow(client, agent, tmp_path):
    doc = tmp_path / "note.txt"
    doc.write_text("print me")

    client.post("/printers", headers=HEADERS, json=make_printer().model_dump(mode="json"))
    r = client.post("/jobs", headers=HEADERS, json={"file_path": str(doc), "printer_host": "10.0.0.5"})
    assert r.status_code == 400

    driver = upload(client).json()
    client.put("/printers/10.0.0.5/driver", headers=HEADERS, json={"driver_id": driver["id"]})
    r = client.post("/jobs", headers=HEADERS, json={
        "file_path": str(doc),
        "printer_host": "10.0.0.5",
        "options": {"Copies": "3"},
    })
    assert r.status_code == 200
    job = r.json()
    assert job["status"] == "QUEUED"

    agent.queue.process_next()
    assert client.get(f"/jobs/{job['id']}", headers=HEADERS).json()["status"] == "COMPLETED"
    assert client.get("/jobs/unknown", headers=HEADERS).status_code == 404

    status = client.get("/status", headers=HEADERS).json()
    assert status["jobs_total"] == 1
    assert status["discovery_running"] is False

    assert client.delete("/jobs/history", headers=HEADERS).json()["removed"] == 1
    assert client.get("/jobs", headers=HEADERS).json() == []


class StaticSource:
    name = "static"

    def __init__(self, records):
        self.records = records

    async def run(self, put):
        for record in self.records:
            await put(record)


def test_discovery_endpoints(agent, monkeypatch):
    monkeypatch.setattr(env, "PRINT_AGENT_TOKEN", TOKEN)
    agent.source_factory = lambda: [StaticSource([
        make_printer(),
        make_printer(name="Acme LaserJet", transport=Transport.IPP, port=631),
    ])]

    with TestClient(create_app(agent)) as client:
        assert client.post("/discovery/start", headers=HEADERS).status_code == 200
        for _ in range(50):
            found = client.get("/discovery/printers", headers=HEADERS).json()
            if found and found[0]["transport"] == "IPP":
                break
            time.sleep(0.02)
        assert client.post("/discovery/stop", headers=HEADERS).json()["stopped"] is True
        found = client.get("/discovery/printers", headers=HEADERS).json()

    assert len(found) == 1
    assert found[0]["name"] == "Acme LaserJet"
    assert found[0]["transport"] == "IPP"


def test_import_driver_directory(client, tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    r = client.post("/drivers/import-directory", headers=HEADERS, json={"path": str(empty)})
    assert r.status_code == 200
    assert r.json()["imported"] == 0

    vendor = tmp_path / "vendor"
    vendor.mkdir()
    (vendor / "acme.ppd").write_bytes(SAMPLE_PPD)
    (vendor / "notes.txt").write_bytes(b"not a driver")

    r = client.post("/drivers/import-directory", headers=HEADERS, json={"path": str(vendor)})
    assert r.json()["imported"] == 1
    r = client.post("/drivers/import-directory", headers=HEADERS, json={"path": str(vendor)})
    assert r.json()["imported"] == 0

    drivers = client.get("/drivers", headers=HEADERS).json()
    assert [d["display_name"] for d in drivers] == ["Acme Laser 5000 PS"]
