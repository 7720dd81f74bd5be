import math

import pytest

from quarterlies.calculator import (
    PBT_TOLERANCE,
    calculate_derived_metrics,
    merge_financial_data,
    round_financial_value,
    validate_required_metrics,
)
from quarterlies.indicators import (
    DEPRECIATION,
    EMPLOYEES_COST,
    INTEREST,
    NET_SALES,
    OPERATING_PROFIT,
    OTHER_EXPENSES,
    OTHER_INCOME,
    PBT_REPORTED,
    PURCHASE_OF_TRADED_GOODS,
    STOCK_CHANGE,
    TOTAL_INCOME,
    UNAVAILABLE,
)
from quarterlies.models import ERROR, WARNING, Metrics


def _full_raw():
    return {
        TOTAL_INCOME: 22697,
        PURCHASE_OF_TRADED_GOODS: 105,
        STOCK_CHANGE: -17,
        EMPLOYEES_COST: 13616,
        DEPRECIATION: 691,
        OTHER_EXPENSES: 4620,
        INTEREST: 50,
        OTHER_INCOME: 947,
    }


def _issue_for(issues, metric):
    return [issue for issue in issues if issue.metric == metric]


def test_chained_metrics_match_reference_figures():
    metrics, issues = calculate_derived_metrics(_full_raw())
    assert metrics.contribution == 22609
    assert metrics.op_ebitda == 4373
    assert metrics.op_ebit == 3682
    assert metrics.op_pbt == 3632
    assert metrics.pbt == 4579
    assert metrics.revenue == 22697
    assert metrics.op_ebitda_pct == pytest.approx(4373 / 22697 * 100)
    assert metrics.op_ebit_pct == pytest.approx(3682 / 22697 * 100)
    assert issues == []


def test_contribution_defaults_optional_components_to_zero():
    raw = {TOTAL_INCOME: 1000, PURCHASE_OF_TRADED_GOODS: "--"}
    metrics, _ = calculate_derived_metrics(raw)
    assert metrics.contribution == 1000


def test_missing_total_income_does_not_default_to_zero():
    raw = _full_raw()
    raw[TOTAL_INCOME] = UNAVAILABLE
    metrics, issues = calculate_derived_metrics(raw)
    assert metrics.contribution is None
    assert metrics.op_ebit is None
    contribution_issues = _issue_for(issues, "Contribution")
    assert contribution_issues and contribution_issues[0].severity == ERROR


def test_op_ebitda_falls_back_to_reported_operating_profit():
    raw = {TOTAL_INCOME: 65799, OPERATING_PROFIT: 18487, DEPRECIATION: 1446}
    metrics, issues = calculate_derived_metrics(raw)
    assert metrics.op_ebitda == 18487
    assert metrics.op_ebit == 17041
    assert not _issue_for(issues, "Op. EBITDA")


def test_missing_operands_yield_absent_metrics_with_issue_severity():
    metrics, issues = calculate_derived_metrics({TOTAL_INCOME: 100})
    assert metrics.op_ebitda is None
    assert metrics.op_ebit is None
    assert metrics.op_pbt is None
    assert metrics.pbt is None
    assert _issue_for(issues, "Op. EBITDA")[0].severity == ERROR
    assert _issue_for(issues, "Op. EBIT")[0].severity == WARNING
    assert _issue_for(issues, "Op. PBT")[0].severity == WARNING
    assert _issue_for(issues, "PBT")[0].severity == ERROR


def test_pbt_falls_back_to_reported_value():
    raw = _full_raw()
    raw[OTHER_INCOME] = "--"
    raw["Profit before tax"] = 4600
    metrics, issues = calculate_derived_metrics(raw)
    assert metrics.pbt == 4600
    assert not _issue_for(issues, "PBT")


@pytest.mark.parametrize("revenue", [0, "--", None])
def test_percentages_are_omitted_without_usable_revenue(revenue):
    raw = {NET_SALES: revenue, OPERATING_PROFIT: 50, DEPRECIATION: 10}
    if revenue is None:
        raw.pop(NET_SALES)
    metrics, _ = calculate_derived_metrics(raw)
    assert metrics.op_ebitda_pct is None
    assert metrics.op_ebit_pct is None
    for value in metrics.to_dict().values():
        assert math.isfinite(value)


def test_revenue_prefers_net_sales_over_total_income():
    metrics, _ = calculate_derived_metrics({NET_SALES: 900, TOTAL_INCOME: 1000})
    assert metrics.revenue == 900


def test_pbt_cross_validation_flags_discrepancy_without_changing_value():
    raw = _full_raw()
    raw[PBT_REPORTED] = 4579 + PBT_TOLERANCE + 7
    metrics, issues = calculate_derived_metrics(raw)
    assert metrics.pbt == 4579
    flagged = _issue_for(issues, "PBT")
    assert len(flagged) == 1
    assert flagged[0].severity == WARNING
    assert flagged[0].expected == raw[PBT_REPORTED]
    assert flagged[0].actual == 4579


def test_pbt_cross_validation_tolerates_rounding():
    raw = _full_raw()
    raw[PBT_REPORTED] = 4579.6
    _, issues = calculate_derived_metrics(raw)
    assert not _issue_for(issues, "PBT")


def test_validate_required_metrics_reports_each_missing_field():
    issues = validate_required_metrics({TOTAL_INCOME: 10, EMPLOYEES_COST: "--"})
    assert sorted(issue.metric for issue in issues) == sorted([EMPLOYEES_COST, OTHER_EXPENSES, DEPRECIATION])
    assert all(issue.severity == ERROR for issue in issues)


def test_round_financial_value():
    assert round_financial_value(12.3456) == 12.35
    assert round_financial_value("1,234.567") == 1234.57
    assert round_financial_value("--") == "--"
    assert round_financial_value("abc") == UNAVAILABLE


def test_merge_financial_data_overlays_present_metrics():
    merged = merge_financial_data({TOTAL_INCOME: 100}, Metrics(revenue=100.0, op_ebitda=20.0))
    assert merged == {TOTAL_INCOME: 100, "Revenue": 100.0, "Op. EBITDA": 20.0}
