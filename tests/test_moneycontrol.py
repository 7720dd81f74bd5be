from pathlib import Path

import pytest
import requests

from quarterlies.calculator import calculate_derived_metrics
from quarterlies.companies import CompanyCatalog, CompanyTarget
from quarterlies.errors import NetworkFailure, NotConfigured, ParseFailure
from quarterlies.http_fetch import RetryPolicy
from quarterlies.indicators import (
    EMPLOYEES_COST,
    NET_PROFIT,
    NET_SALES,
    STOCK_CHANGE,
    TOTAL_INCOME,
    UNAVAILABLE,
)
from quarterlies.moneycontrol import MoneyControlSource, parse_moneycontrol_quarters


FIXTURES = Path(__file__).resolve().parent / "fixtures"
URL = "https://www.moneycontrol.com/markets/financials/quarterly-results/example-EX01/"


def _fixture(name):
    return (FIXTURES / name).read_text(encoding="utf-8")


def test_parse_skips_trend_column_and_section_rows():
    quarters = parse_moneycontrol_quarters(_fixture("moneycontrol_quarters.html"), 8)
    assert [q.canonical_period for q in quarters] == ["Q2'26", "Q1'26", "Q4'25", "Q3'25", "Q2'25"]
    assert quarters[0].native_period_label == "Sep '25"

    latest = quarters[0].raw_indicators
    assert latest[NET_SALES] == 22697
    assert latest[TOTAL_INCOME] == 22697
    assert latest[STOCK_CHANGE] == -17
    assert latest[EMPLOYEES_COST] == 13616
    assert latest[NET_PROFIT] == 3430
    assert latest["Other Operating Income"] == UNAVAILABLE
    for section in ("Indicators", "INCOME", "EXPENDITURE", "EPS Before Extra Ordinary"):
        assert section not in latest


def test_parsed_quarter_feeds_calculator():
    latest = parse_moneycontrol_quarters(_fixture("moneycontrol_quarters.html"), 1)[0]
    metrics, issues = calculate_derived_metrics(latest.raw_indicators)
    assert metrics.contribution == 22609
    assert metrics.pbt == 4579
    assert issues == []


def test_parse_caps_quarter_count_without_shifting_columns():
    quarters = parse_moneycontrol_quarters(_fixture("moneycontrol_quarters.html"), 3)
    assert [q.canonical_period for q in quarters] == ["Q2'26", "Q1'26", "Q4'25"]
    assert quarters[2].raw_indicators[STOCK_CHANGE] == UNAVAILABLE
    assert quarters[2].raw_indicators[EMPLOYEES_COST] == 13200


def test_parse_layout_without_trend_column():
    quarters = parse_moneycontrol_quarters(_fixture("moneycontrol_no_trend.html"), 2)
    assert [q.canonical_period for q in quarters] == ["Q2'26", "Q1'26"]
    latest = quarters[0].raw_indicators
    assert latest["Interest Income"] == 10120.5
    assert latest["Other Income"] == UNAVAILABLE
    assert latest["Provisions And Contingencies"] == -120
    assert quarters[1].raw_indicators["Other Income"] == 1210


def test_parse_without_financial_table():
    with pytest.raises(ParseFailure):
        parse_moneycontrol_quarters("<html><body><table><tr><td>Home</td></tr></table></body></html>", 4)


def test_fetch_fails_fast_when_no_url_configured():
    calls = []
    source = MoneyControlSource(
        catalog=CompanyCatalog([CompanyTarget("Unlisted Co")]),
        get_fn=lambda *args, **kwargs: calls.append(args),
    )
    with pytest.raises(NotConfigured):
        source.fetch("Unlisted Co", 4)
    assert calls == []
    assert not source.is_configured("Unlisted Co")


def test_fetch_uses_catalog_url_and_long_timeout():
    seen = {}

    class Resp:
        text = _fixture("moneycontrol_quarters.html")

        def raise_for_status(self):
            return None

    def fake_get(url, **kwargs):
        seen["url"] = url
        seen["timeout"] = kwargs["timeout"]
        return Resp()

    source = MoneyControlSource(catalog=CompanyCatalog([CompanyTarget("Example", URL)]), get_fn=fake_get)
    quarters = source.fetch("example", 4)
    assert len(quarters) == 4
    assert seen == {"url": URL, "timeout": 45}


def test_render_fn_replaces_plain_get_and_shares_retry_loop():
    attempts = {"count": 0}
    delays = []

    def flaky_render(url):
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise NetworkFailure("navigation timeout", source="moneycontrol")
        return _fixture("moneycontrol_quarters.html")

    source = MoneyControlSource(
        policy=RetryPolicy(max_attempts=3, base_delay=2.0, timeout=45),
        render_fn=flaky_render,
        sleep_fn=delays.append,
    )
    quarters = source.fetch_url(URL, 2, "Example")
    assert len(quarters) == 2
    assert attempts["count"] == 2
    assert delays == [2.0]


def test_fetch_url_surfaces_network_failure_after_retries():
    def down(url, **kwargs):
        raise requests.exceptions.ConnectionError("connection reset")

    source = MoneyControlSource(policy=RetryPolicy(max_attempts=2, base_delay=0.5), get_fn=down, sleep_fn=lambda _s: None)
    with pytest.raises(NetworkFailure, match="All 2 attempts failed"):
        source.fetch_url(URL, 4, "Example")
