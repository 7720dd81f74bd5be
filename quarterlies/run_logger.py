import json
import time
from pathlib import Path
from typing import Any, Dict


RUN_LOG_NAME = "run.log"
RESULTS_NAME = "results.json"


def log_step(output_dir: Path, step: str, payload: Dict[str, Any]) -> None:
    """Append one ``{"ts", "step", "payload"}`` JSON line to the run's audit log."""
    output_dir.mkdir(parents=True, exist_ok=True)
    entry = {"ts": time.time(), "step": step, "payload": payload}
    with open(output_dir / RUN_LOG_NAME, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")


def write_results(output_dir: Path, payload: Dict[str, Any]) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / RESULTS_NAME
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    return path
