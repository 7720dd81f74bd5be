import copy
import time
import uuid
import threading
from dataclasses import asdict
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .companies import CompanyCatalog
from .config import load_config
from .orchestrator import FallbackOrchestrator, build_orchestrator
from .periods import current_fiscal_quarter
from .screener import ScreenerSource


RUNS: Dict[str, Dict[str, Any]] = {}
RUN_LOCK = threading.Lock()
RUN_TIMEOUT_SECONDS = 30 * 60


def _default_fiscal_years() -> List[int]:
    current = current_fiscal_quarter(date.today()).fiscal_year
    return [current, current - 1]


class RunRequest(BaseModel):
    companies: List[str] = []
    quarters: List[str] = ["Q1", "Q2", "Q3", "Q4"]
    fiscal_years: Optional[List[int]] = None
    test_mode: bool = False
    test_company: Optional[str] = None


def create_app(
    orchestrator_factory: Optional[Callable[[Optional[Path]], FallbackOrchestrator]] = None,
    screener: Optional[ScreenerSource] = None,
    catalog: Optional[CompanyCatalog] = None,
) -> FastAPI:
    app = FastAPI(title="Quarterlies")

    if orchestrator_factory is None:
        def orchestrator_factory(output_dir: Optional[Path]) -> FallbackOrchestrator:
            config = load_config()
            return build_orchestrator(config, catalog=catalog, output_dir=output_dir)

    def _catalog() -> CompanyCatalog:
        if catalog is not None:
            return catalog
        return CompanyCatalog.from_file(load_config().company_catalog_path)

    @app.post("/api/run")
    def run_scraping(payload: RunRequest, mode: str = "async"):
        companies = [name.strip() for name in payload.companies if name.strip()]
        if not companies and not payload.test_mode:
            raise HTTPException(status_code=400, detail="No companies provided")
        if not payload.quarters:
            raise HTTPException(status_code=400, detail="No quarters selected")
        fiscal_years = payload.fiscal_years or _default_fiscal_years()

        output_dir = _new_output_dir()
        orchestrator = orchestrator_factory(output_dir)
        run_args = {
            "companies": companies,
            "requested_quarters": payload.quarters,
            "requested_fiscal_years": fiscal_years,
            "test_mode": payload.test_mode,
            "test_company": payload.test_company,
        }

        if mode == "sync":
            snapshots: List[Dict[str, Any]] = []
            result = orchestrator.run(sink=snapshots.append, **run_args)
            return JSONResponse(
                {
                    "result": result.to_dict(),
                    "progress": snapshots[-1] if snapshots else None,
                    "meta": {"output_dir": str(output_dir)},
                }
            )

        run_id = str(uuid.uuid4())
        with RUN_LOCK:
            RUNS[run_id] = {
                "status": "running",
                "progress": None,
                "result": None,
                "meta": {"output_dir": str(output_dir)},
                "started_at": time.time(),
                "last_update": time.time(),
            }

        thread = threading.Thread(
            target=_run_scraping_stream,
            args=(run_id, orchestrator, run_args),
            daemon=True,
        )
        thread.start()

        return JSONResponse({"run_id": run_id})

    @app.get("/api/status")
    def run_status(run_id: str):
        with RUN_LOCK:
            data = copy.deepcopy(RUNS.get(run_id))
        if not data:
            raise HTTPException(status_code=404, detail="Run not found")
        if data.get("status") == "running":
            last_update = data.get("last_update", data.get("started_at", time.time()))
            if time.time() - last_update > RUN_TIMEOUT_SECONDS:
                _fail_run(run_id, "Run timed out")
                with RUN_LOCK:
                    data = copy.deepcopy(RUNS.get(run_id))
        return JSONResponse(data)

    @app.get("/api/companies")
    def list_companies():
        known = _catalog()
        return JSONResponse({"companies": [asdict(known.get(name)) for name in known.names()]})

    @app.get("/api/validate-company")
    def validate_company(name: str):
        if not name.strip():
            raise HTTPException(status_code=400, detail="Company name is required")
        source = screener or ScreenerSource()
        return JSONResponse(source.validate_company_name(name.strip()))

    return app


app = create_app()


def _new_output_dir() -> Path:
    return Path(load_config().output_dir) / f"run_{time.time_ns()}_{uuid.uuid4().hex[:8]}"


def _run_scraping_stream(run_id: str, orchestrator: FallbackOrchestrator, run_args: Dict[str, Any]) -> None:
    try:
        result = orchestrator.run(sink=lambda snapshot: _update_run(run_id, snapshot), **run_args)
        _finalize_run(run_id, result.to_dict())
    except Exception as exc:
        _fail_run(run_id, str(exc))


def _update_run(run_id: str, snapshot: Dict[str, Any]) -> None:
    with RUN_LOCK:
        run = RUNS.get(run_id)
        if not run:
            return
        run["progress"] = snapshot
        run["last_update"] = time.time()


def _finalize_run(run_id: str, result: Dict[str, Any]) -> None:
    with RUN_LOCK:
        run = RUNS.get(run_id)
        if not run:
            return
        run["status"] = "completed" if result.get("success") else "failed"
        run["result"] = result
        run["last_update"] = time.time()


def _fail_run(run_id: str, error: str) -> None:
    with RUN_LOCK:
        run = RUNS.get(run_id)
        if not run:
            return
        run["status"] = "failed"
        run["error"] = error
        run["last_update"] = time.time()
