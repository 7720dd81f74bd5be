import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .models import CompanyProgress, CompanyStatus


MAX_LOG_LINES = 50

ProgressSink = Callable[[Dict[str, Any]], None]


@dataclass
class RunContext:
    """Per-run progress state. The orchestrator is the only writer."""

    companies: List[CompanyProgress] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    sink: Optional[ProgressSink] = None
    test_mode: bool = False
    current_step: str = "Initializing..."
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    clock: Callable[[], datetime] = datetime.now
    company_started: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def for_companies(
        cls,
        names: List[str],
        sink: Optional[ProgressSink] = None,
        test_mode: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> "RunContext":
        return cls(
            companies=[CompanyProgress(company=name) for name in names],
            sink=sink,
            test_mode=test_mode,
            clock=clock,
        )

    @property
    def total(self) -> int:
        return len(self.companies)

    def progress_for(self, company: str) -> CompanyProgress:
        for item in self.companies:
            if item.company == company:
                return item
        raise KeyError(company)

    def add_log(self, message: str) -> None:
        self.logs.append(f"[{self.clock().strftime('%H:%M:%S')}] {message}")
        if len(self.logs) > MAX_LOG_LINES:
            del self.logs[: len(self.logs) - MAX_LOG_LINES]

    def start(self, company: str, estimated_seconds: int) -> None:
        self.company_started[company] = time.time()
        self.current_step = f"Processing {company}..."
        self.update(
            company,
            f"Starting process for {company}...",
            status=CompanyStatus.PROCESSING,
            stage="Initializing scraper",
            progress=0,
            estimated_seconds=estimated_seconds,
        )

    def update(self, company: str, message: Optional[str] = None, **changes: Any) -> CompanyProgress:
        item = self.progress_for(company)
        for key, value in changes.items():
            setattr(item, key, value)
        started = self.company_started.get(company)
        if started is not None:
            item.elapsed_seconds = round(time.time() - started, 1)
        if message:
            self.add_log(message)
            item.logs.append(self.logs[-1])
            if len(item.logs) > MAX_LOG_LINES:
                del item.logs[: len(item.logs) - MAX_LOG_LINES]
        self.emit()
        return item

    def mark_completed(self, company: str, message: str, stage: str = "Completed") -> None:
        self.completed.append(company)
        self.update(company, message, status=CompanyStatus.COMPLETED, stage=stage, progress=100)

    def mark_failed(self, company: str, message: str, stage: str = "Failed") -> None:
        self.failed.append(company)
        self.update(company, message, status=CompanyStatus.FAILED, stage=stage, progress=0)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "companies": [item.to_dict() for item in self.companies],
            "logs": list(self.logs),
            "current_step": self.current_step,
            "total": self.total,
            "completed": list(self.completed),
            "failed": list(self.failed),
            "test_mode": self.test_mode,
        }

    def emit(self) -> None:
        if self.sink is not None:
            self.sink(self.snapshot())
