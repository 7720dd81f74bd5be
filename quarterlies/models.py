from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DataSource(str, Enum):
    SCREENER = "screener"
    MONEYCONTROL = "moneycontrol"
    PERPLEXITY = "perplexity"


class CompanyStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


WARNING = "warning"
ERROR = "error"


@dataclass
class Metrics:
    revenue: Optional[float] = None
    contribution: Optional[float] = None
    op_ebitda: Optional[float] = None
    op_ebitda_pct: Optional[float] = None
    op_ebit: Optional[float] = None
    op_ebit_pct: Optional[float] = None
    op_pbt: Optional[float] = None
    pbt: Optional[float] = None

    DISPLAY_NAMES = {
        "revenue": "Revenue",
        "contribution": "Contribution",
        "op_ebitda": "Op. EBITDA",
        "op_ebitda_pct": "Op. EBITDA%",
        "op_ebit": "Op. EBIT",
        "op_ebit_pct": "Op. EBIT%",
        "op_pbt": "Op. PBT",
        "pbt": "PBT",
    }

    def to_dict(self) -> Dict[str, float]:
        out: Dict[str, float] = {}
        for attr, name in self.DISPLAY_NAMES.items():
            value = getattr(self, attr)
            if value is not None:
                out[name] = value
        return out


@dataclass(frozen=True)
class ValidationIssue:
    metric: str
    message: str
    severity: str
    expected: Optional[float] = None
    actual: Optional[float] = None


@dataclass(frozen=True)
class QuarterRecord:
    native_period_label: str
    canonical_period: str
    raw_indicators: Dict[str, Any]
    derived_metrics: Metrics = field(default_factory=Metrics)
    issues: List[ValidationIssue] = field(default_factory=list)
    financial_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quarter": self.native_period_label,
            "period": self.canonical_period,
            "raw_data": dict(self.raw_indicators),
            "calculated_metrics": self.derived_metrics.to_dict(),
            "financial_data": dict(self.financial_data),
            "issues": [asdict(issue) for issue in self.issues],
        }


@dataclass(frozen=True)
class CompanyResult:
    company_name: str
    data_source_used: DataSource
    quarters: List[QuarterRecord]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "company_name": self.company_name,
            "data_source": self.data_source_used.value,
            "quarters": [q.to_dict() for q in self.quarters],
        }


@dataclass
class CompanyProgress:
    company: str
    status: CompanyStatus = CompanyStatus.PENDING
    stage: str = "Waiting to start"
    data_source: Optional[DataSource] = None
    fallback_step: int = 1
    progress: int = 0
    elapsed_seconds: float = 0.0
    estimated_seconds: Optional[int] = None
    switched_source: bool = False
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["data_source"] = self.data_source.value if self.data_source else None
        return data


@dataclass(frozen=True)
class CompanyError:
    company: str
    error: str
    timestamp: float


@dataclass
class RunResult:
    results: List[CompanyResult]
    errors: List[CompanyError]
    success: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "errors": [asdict(e) for e in self.errors],
        }
