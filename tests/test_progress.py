from datetime import datetime

import pytest

from quarterlies.models import CompanyStatus, DataSource
from quarterlies.progress import MAX_LOG_LINES, RunContext


def _fixed_clock():
    return datetime(2025, 10, 17, 9, 5, 7)


def test_add_log_prefixes_time_and_keeps_last_fifty_lines():
    ctx = RunContext.for_companies(["TCS"], clock=_fixed_clock)
    for idx in range(MAX_LOG_LINES + 5):
        ctx.add_log(f"line {idx}")
    assert len(ctx.logs) == MAX_LOG_LINES
    assert ctx.logs[0] == "[09:05:07] line 5"
    assert ctx.logs[-1] == f"[09:05:07] line {MAX_LOG_LINES + 4}"


def test_update_emits_snapshot_to_sink():
    snapshots = []
    ctx = RunContext.for_companies(["TCS", "Infosys"], sink=snapshots.append, test_mode=True, clock=_fixed_clock)

    ctx.start("TCS", estimated_seconds=30)
    ctx.update("TCS", "[Step 2] Falling back", data_source=DataSource.MONEYCONTROL, fallback_step=2)

    assert len(snapshots) == 2
    latest = snapshots[-1]
    assert latest["total"] == 2
    assert latest["test_mode"] is True
    assert latest["current_step"] == "Processing TCS..."
    tcs = latest["companies"][0]
    assert tcs["status"] == "processing"
    assert tcs["data_source"] == "moneycontrol"
    assert tcs["fallback_step"] == 2
    assert tcs["estimated_seconds"] == 30
    assert tcs["logs"][-1] == "[09:05:07] [Step 2] Falling back"
    assert latest["companies"][1]["status"] == "pending"


def test_snapshots_are_copies():
    snapshots = []
    ctx = RunContext.for_companies(["TCS"], sink=snapshots.append)
    ctx.update("TCS", "first")
    ctx.update("TCS", "second")
    assert len(snapshots[0]["logs"]) == 1
    assert len(snapshots[1]["logs"]) == 2


def test_terminal_states():
    ctx = RunContext.for_companies(["TCS", "Wipro"])
    ctx.mark_completed("TCS", "done", stage="Completed (screener)")
    ctx.mark_failed("Wipro", "gone")
    assert ctx.progress_for("TCS").status == CompanyStatus.COMPLETED
    assert ctx.progress_for("TCS").progress == 100
    assert ctx.progress_for("Wipro").status == CompanyStatus.FAILED
    assert ctx.completed == ["TCS"]
    assert ctx.failed == ["Wipro"]
    with pytest.raises(KeyError):
        ctx.progress_for("HCL")
