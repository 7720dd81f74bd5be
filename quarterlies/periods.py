"""Fiscal-quarter labels for an April-March fiscal year.

Q1 = Apr-Jun, Q2 = Jul-Sep, Q3 = Oct-Dec (all in the fiscal year that ends
the following March), Q4 = Jan-Mar of the fiscal year ending that March.
Canonical labels look like ``Q2'26``.
"""
import re
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Tuple


MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

_MONTH_TOKENS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_CANONICAL_RE = re.compile(r"^\s*Q([1-4])\s*'?\s*(?:FY)?\s*'?\s*(\d{2}|\d{4})\s*$", re.IGNORECASE)
_NATIVE_RE = re.compile(r"([A-Za-z]+)[\s\-']*'?(\d{4}|\d{2})\b")


@dataclass(frozen=True)
class FiscalQuarter:
    quarter_number: int
    fiscal_year: int
    start_month: int
    end_month: int
    calendar_year: int

    @property
    def label(self) -> str:
        return canonical_label(self.quarter_number, self.fiscal_year)

    @property
    def period_text(self) -> str:
        return (
            f"{MONTH_NAMES[self.start_month - 1]}-{MONTH_NAMES[self.end_month - 1]} "
            f"{self.calendar_year}"
        )


def canonical_label(quarter_number: int, fiscal_year: int) -> str:
    return f"Q{quarter_number}'{fiscal_year % 100:02d}"


def fiscal_quarter_for(month: int, year: int) -> FiscalQuarter:
    if not 1 <= month <= 12:
        raise ValueError(f"month out of range: {month}")
    if month <= 3:
        return FiscalQuarter(4, year, 1, 3, year)
    quarter_number = (month - 4) // 3 + 1
    start_month = 4 + (quarter_number - 1) * 3
    return FiscalQuarter(quarter_number, year + 1, start_month, start_month + 2, year)


def fiscal_quarter_from_parts(quarter_number: int, fiscal_year: int) -> FiscalQuarter:
    if quarter_number == 4:
        return FiscalQuarter(4, fiscal_year, 1, 3, fiscal_year)
    start_month = 4 + (quarter_number - 1) * 3
    return FiscalQuarter(quarter_number, fiscal_year, start_month, start_month + 2, fiscal_year - 1)


def current_fiscal_quarter(today: Optional[date] = None) -> FiscalQuarter:
    today = today or date.today()
    return fiscal_quarter_for(today.month, today.year)


def previous_quarters(start: FiscalQuarter, count: int) -> List[FiscalQuarter]:
    quarters: List[FiscalQuarter] = []
    quarter_number, fiscal_year = start.quarter_number, start.fiscal_year
    for _ in range(count):
        quarter_number -= 1
        if quarter_number < 1:
            quarter_number = 4
            fiscal_year -= 1
        quarters.append(fiscal_quarter_from_parts(quarter_number, fiscal_year))
    return quarters


def _expand_year(raw: str) -> int:
    year = int(raw)
    return year + 2000 if year < 100 else year


def parse_canonical_period(label: str) -> Optional[Tuple[int, int]]:
    match = _CANONICAL_RE.match(label or "")
    if not match:
        return None
    return int(match.group(1)), _expand_year(match.group(2))


def to_canonical_period(native_label: str) -> str:
    label = (native_label or "").strip()
    parsed = parse_canonical_period(label)
    if parsed:
        return canonical_label(*parsed)
    for match in _NATIVE_RE.finditer(label):
        month = _MONTH_TOKENS.get(match.group(1).lower())
        if month is None:
            continue
        return fiscal_quarter_for(month, _expand_year(match.group(2))).label
    # "Jul-Sep 2024": the month token and the year are not adjacent
    year_match = re.search(r"\b(20\d{2})\b", label)
    if year_match:
        for token in re.findall(r"[A-Za-z]+", label):
            month = _MONTH_TOKENS.get(token.lower())
            if month is not None:
                return fiscal_quarter_for(month, int(year_match.group(1))).label
    return native_label


def _quarter_number(value) -> Optional[int]:
    match = re.fullmatch(r"\s*Q?([1-4])\s*", str(value), flags=re.IGNORECASE)
    return int(match.group(1)) if match else None


def is_selected(
    canonical_period: str,
    requested_quarters: Iterable,
    requested_fiscal_years: Iterable[int],
) -> bool:
    parsed = parse_canonical_period(canonical_period)
    if parsed is None:
        return False
    quarter_number, fiscal_year = parsed
    quarters = {_quarter_number(q) for q in requested_quarters}
    years = {int(y) for y in requested_fiscal_years}
    return quarter_number in quarters and fiscal_year in years


def requested_periods(
    requested_quarters: Iterable,
    requested_fiscal_years: Iterable[int],
    today: Optional[date] = None,
) -> List[str]:
    current = current_fiscal_quarter(today)
    quarters = sorted({q for q in (_quarter_number(v) for v in requested_quarters) if q})
    labels: List[str] = []
    for fiscal_year in sorted({int(y) for y in requested_fiscal_years}, reverse=True):
        for quarter_number in quarters:
            if (fiscal_year, quarter_number) > (current.fiscal_year, current.quarter_number):
                continue
            labels.append(canonical_label(quarter_number, fiscal_year))
    return labels
