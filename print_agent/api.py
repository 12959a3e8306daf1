import base64
import binascii
import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request

from print_agent import env
from print_agent.agent import PrintAgent
from print_agent.models import DriverAssignment, DriverDirectory, DriverUpload, PrinterRecord, PrintJobIn
from print_agent.security import verify_agent_token

logging.basicConfig(level=env.LOG_LEVEL)
logger = logging.getLogger("print_agent")


def get_agent(request: Request) -> PrintAgent:
    return request.app.state.agent


def create_app(agent: Optional[PrintAgent] = None) -> FastAPI:
    app = FastAPI(title="Network Print Agent")
    app.state.agent = agent
    protected = [Depends(verify_agent_token)]

    @app.on_event("startup")
    async def _startup():
        if app.state.agent is None:
            app.state.agent = PrintAgent.from_env()
        await app.state.agent.start()

    @app.on_event("shutdown")
    async def _shutdown():
        if app.state.agent is not None:
            await app.state.agent.shutdown()

    @app.get("/health")
    def health():
        # public: liveness only, nothing sensitive
        return {"ok": True, "agent_id": env.AGENT_ID, "name": env.AGENT_NAME}

    @app.get("/status", dependencies=protected)
    def status(agent: PrintAgent = Depends(get_agent)):
        return {
            "ok": True,
            "agent_id": env.AGENT_ID,
            "name": env.AGENT_NAME,
            **agent.get_state(),
        }

    # -----------------------------
    # Printers
    # -----------------------------
    @app.get("/printers", dependencies=protected)
    def list_printers(agent: PrintAgent = Depends(get_agent)):
        return [p.model_dump() for p in agent.printers.snapshot()]

    @app.post("/printers", dependencies=protected)
    def save_printer(payload: PrinterRecord, agent: PrintAgent = Depends(get_agent)):
        return agent.save_printer(payload).model_dump()

    @app.delete("/printers/{host}", dependencies=protected)
    def delete_printer(host: str, agent: PrintAgent = Depends(get_agent)):
        if not agent.printers.remove(host):
            raise HTTPException(status_code=404, detail="Printer not found")
        return {"ok": True}

    @app.put("/printers/{host}/driver", dependencies=protected)
    def assign_driver(host: str, payload: DriverAssignment,
                      agent: PrintAgent = Depends(get_agent)):
        if agent.printers.get(host) is None:
            raise HTTPException(status_code=404, detail="Printer not found")
        try:
            return agent.assign_driver(host, payload.driver_id).model_dump()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    # -----------------------------
    # Discovery
    # -----------------------------
    @app.post("/discovery/start", dependencies=protected)
    async def start_discovery(agent: PrintAgent = Depends(get_agent)):
        await agent.start_discovery()
        return {"ok": True, "running": True}

    @app.post("/discovery/stop", dependencies=protected)
    async def stop_discovery(agent: PrintAgent = Depends(get_agent)):
        stopped = await agent.stop_discovery()
        return {"ok": True, "stopped": stopped}

    @app.get("/discovery/printers", dependencies=protected)
    def discovered_printers(agent: PrintAgent = Depends(get_agent)):
        return [p.model_dump() for p in agent.discovered_printers()]

    # -----------------------------
    # Drivers
    # -----------------------------
    @app.get("/drivers", dependencies=protected)
    def list_drivers(agent: PrintAgent = Depends(get_agent)):
        return [d.model_dump() for d in agent.library.list()]

    @app.post("/drivers", dependencies=protected)
    def import_driver(payload: DriverUpload, agent: PrintAgent = Depends(get_agent)):
        try:
            data = base64.b64decode(payload.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="content_base64 is not valid base64")
        try:
            return agent.import_driver(data, payload.file_name).model_dump()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.post("/drivers/import-directory", dependencies=protected)
    def import_driver_directory(payload: DriverDirectory, agent: PrintAgent = Depends(get_agent)):
        return {"ok": True, "imported": agent.import_drivers_from_directory(payload.path)}

    @app.delete("/drivers", dependencies=protected)
    def remove_all_drivers(agent: PrintAgent = Depends(get_agent)):
        return {"ok": True, "removed": agent.library.remove_all()}

    @app.post("/drivers/cleanup", dependencies=protected)
    def remove_unused_drivers(agent: PrintAgent = Depends(get_agent)):
        return {"ok": True, "removed": agent.library.remove_unused()}

    @app.delete("/drivers/{driver_id}", dependencies=protected)
    def remove_driver(driver_id: str, agent: PrintAgent = Depends(get_agent)):
        if not agent.library.remove_driver(driver_id):
            raise HTTPException(status_code=404, detail="Driver not found")
        return {"ok": True}

    @app.get("/drivers/{driver_id}/options", dependencies=protected)
    def driver_options(driver_id: str, agent: PrintAgent = Depends(get_agent)):
        driver = agent.library.get(driver_id)
        if driver is None:
            raise HTTPException(status_code=404, detail="Driver not found")
        if not os.path.isfile(driver.storage_path):
            raise HTTPException(status_code=404, detail="Driver file missing")
        return [o.model_dump() for o in agent.parse_driver(driver.storage_path)]

    # -----------------------------
    # Jobs
    # -----------------------------
    @app.post("/jobs", dependencies=protected)
    def create_job(payload: PrintJobIn, agent: PrintAgent = Depends(get_agent)):
        try:
            job = agent.enqueue_job(payload.file_path, payload.printer_host,
                                    payload.options, file_name=payload.file_name)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return job.model_dump()

    @app.get("/jobs", dependencies=protected)
    def list_jobs(agent: PrintAgent = Depends(get_agent)):
        return [j.model_dump() for j in agent.jobs.snapshot()]

    @app.delete("/jobs/history", dependencies=protected)
    def clear_history(agent: PrintAgent = Depends(get_agent)):
        return {"ok": True, "removed": agent.queue.clear_history()}

    @app.get("/jobs/{job_id}", dependencies=protected)
    def job_status(job_id: str, agent: PrintAgent = Depends(get_agent)):
        job = agent.jobs.get(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return job.model_dump()

    return app


app = create_app()
