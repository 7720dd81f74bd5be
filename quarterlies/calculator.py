"""Derived quarterly metrics.

Contribution = Total Income From Operations - Purchase of Traded Goods - Increase / Decrease in Stocks
Op. EBITDA   = Contribution - Employees Cost - Other Expenses
Op. EBIT     = Op. EBITDA - Depreciation
Op. PBT      = Op. EBIT - Interest
PBT          = Op. PBT + Other Income

Purchase of Traded Goods and Increase / Decrease in Stocks default to 0 inside
Contribution. Every other missing operand leaves the dependent metric absent.
"""
import math
from typing import Any, Dict, List, Optional, Tuple

from .indicators import (
    DEPRECIATION,
    DIRECT_EBITDA_KEYS,
    DIRECT_PBT_KEYS,
    EMPLOYEES_COST,
    INTEREST,
    OTHER_EXPENSES,
    OTHER_INCOME,
    PURCHASE_OF_TRADED_GOODS,
    REVENUE_KEYS,
    STOCK_CHANGE,
    TOTAL_INCOME,
    UNAVAILABLE,
    coerce_number,
    first_available,
    is_unavailable,
)
from .models import ERROR, WARNING, Metrics, ValidationIssue


PBT_TOLERANCE = 1.0

REQUIRED_METRICS = [TOTAL_INCOME, EMPLOYEES_COST, OTHER_EXPENSES, DEPRECIATION]


def _percentage(value: Optional[float], revenue: Optional[float]) -> Optional[float]:
    if value is None or revenue is None or revenue == 0:
        return None
    pct = value / revenue * 100
    return pct if math.isfinite(pct) else None


def calculate_derived_metrics(raw: Dict[str, Any]) -> Tuple[Metrics, List[ValidationIssue]]:
    issues: List[ValidationIssue] = []
    metrics = Metrics()

    total_income = coerce_number(raw.get(TOTAL_INCOME))
    purchase = coerce_number(raw.get(PURCHASE_OF_TRADED_GOODS))
    stock_change = coerce_number(raw.get(STOCK_CHANGE))
    employees_cost = coerce_number(raw.get(EMPLOYEES_COST))
    other_expenses = coerce_number(raw.get(OTHER_EXPENSES))
    depreciation = coerce_number(raw.get(DEPRECIATION))
    interest = coerce_number(raw.get(INTEREST))
    other_income = coerce_number(raw.get(OTHER_INCOME))
    reported_pbt = first_available(raw, DIRECT_PBT_KEYS)

    if total_income is not None:
        metrics.contribution = total_income - (purchase or 0.0) - (stock_change or 0.0)
    else:
        issues.append(ValidationIssue("Contribution", f"{TOTAL_INCOME} is missing", ERROR))

    if metrics.contribution is not None and employees_cost is not None and other_expenses is not None:
        metrics.op_ebitda = metrics.contribution - employees_cost - other_expenses
    else:
        direct = first_available(raw, DIRECT_EBITDA_KEYS)
        if direct is not None:
            metrics.op_ebitda = direct
        else:
            issues.append(
                ValidationIssue(
                    "Op. EBITDA",
                    f"Missing required fields: {EMPLOYEES_COST}, {OTHER_EXPENSES} "
                    "(and no directly reported operating profit)",
                    ERROR,
                )
            )

    if metrics.op_ebitda is not None and depreciation is not None:
        metrics.op_ebit = metrics.op_ebitda - depreciation
    else:
        issues.append(ValidationIssue("Op. EBIT", f"Missing Op. EBITDA or {DEPRECIATION}", WARNING))

    if metrics.op_ebit is not None and interest is not None:
        metrics.op_pbt = metrics.op_ebit - interest
    else:
        issues.append(ValidationIssue("Op. PBT", f"Missing Op. EBIT or {INTEREST}", WARNING))

    if metrics.op_pbt is not None and other_income is not None:
        metrics.pbt = metrics.op_pbt + other_income
    elif reported_pbt is not None:
        metrics.pbt = reported_pbt
    else:
        issues.append(
            ValidationIssue(
                "PBT",
                f"Missing Op. PBT or {OTHER_INCOME} (and no directly reported PBT)",
                ERROR,
            )
        )

    metrics.revenue = first_available(raw, REVENUE_KEYS)
    metrics.op_ebitda_pct = _percentage(metrics.op_ebitda, metrics.revenue)
    metrics.op_ebit_pct = _percentage(metrics.op_ebit, metrics.revenue)

    if metrics.pbt is not None and reported_pbt is not None:
        difference = abs(metrics.pbt - reported_pbt)
        if difference > PBT_TOLERANCE:
            issues.append(
                ValidationIssue(
                    "PBT",
                    f"Calculated PBT differs from reported value by {difference:.2f}",
                    WARNING,
                    expected=reported_pbt,
                    actual=metrics.pbt,
                )
            )

    return metrics, issues


def validate_required_metrics(raw: Dict[str, Any]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for name in REQUIRED_METRICS:
        if coerce_number(raw.get(name)) is None:
            issues.append(ValidationIssue(name, "Required metric is missing or invalid", ERROR))
    return issues


def round_financial_value(value: Any) -> Any:
    if isinstance(value, str) and is_unavailable(value):
        return value
    number = coerce_number(value)
    if number is None:
        return UNAVAILABLE
    return round(number, 2)


def merge_financial_data(raw: Dict[str, Any], metrics: Metrics) -> Dict[str, Any]:
    merged = dict(raw)
    merged.update(metrics.to_dict())
    return merged
