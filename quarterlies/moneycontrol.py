import logging
from typing import Any, Callable, List, Optional

from .companies import CompanyCatalog
from .errors import NotConfigured, ParseFailure
from .http_fetch import BROWSER_HEADERS, RetryPolicy, call_with_retry, get_once
from .indicators import NET_SALES
from .models import DataSource, QuarterRecord
from .periods import to_canonical_period
from .table_parser import extract_rows, find_table, load_document, period_headers


logger = logging.getLogger(__name__)

SOURCE_NAME = DataSource.MONEYCONTROL.value

CORPORATE_MARKERS = ("Net Sales", "Employees Cost", "Depreciation", "Other Expenses")
BANKING_MARKERS = ("Net Interest Income", "Interest Income", "Fee Income", "Provisions", "Total Income")
SECTION_LABELS = {"indicators", "trend", "income", "expenditure"}


def _is_results_table(text: str) -> bool:
    return any(m in text for m in CORPORATE_MARKERS) or any(m in text for m in BANKING_MARKERS)


def _skip_label(label: str) -> bool:
    if label.strip().lower() in SECTION_LABELS:
        return True
    return "EPS Before Extra" in label or "EPS After Extra" in label


def parse_moneycontrol_quarters(html: str, quarter_count: int) -> List[QuarterRecord]:
    soup = load_document(html)
    table = find_table(soup, _is_results_table)
    if table is None:
        raise ParseFailure("No financial table found", source=SOURCE_NAME)

    headers = period_headers(table)
    if not headers:
        raise ParseFailure("No quarter headers found", source=SOURCE_NAME)
    # Column detection needs the full header count; the cap applies afterwards.
    rows = extract_rows(table, len(headers), skip_labels=_skip_label, min_cells=3)
    if quarter_count > 0:
        headers = headers[:quarter_count]
    quarters: List[QuarterRecord] = []
    for idx, header in enumerate(headers):
        quarters.append(
            QuarterRecord(
                native_period_label=header,
                canonical_period=to_canonical_period(header),
                raw_indicators={name: values[idx] for name, values in rows.items() if idx < len(values)},
            )
        )
    return quarters


class MoneyControlSource:
    name = DataSource.MONEYCONTROL

    def __init__(
        self,
        catalog: Optional[CompanyCatalog] = None,
        policy: Optional[RetryPolicy] = None,
        get_fn: Optional[Callable[..., Any]] = None,
        render_fn: Optional[Callable[[str], str]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.catalog = catalog or CompanyCatalog()
        self.policy = policy or RetryPolicy(timeout=45)
        self._get = get_fn
        self._render = render_fn
        self._sleep = sleep_fn

    def url_for(self, company: str) -> str:
        return self.catalog.moneycontrol_url(company)

    def is_configured(self, company: str) -> bool:
        return bool(self.url_for(company))

    def fetch(self, company: str, quarter_count: int) -> List[QuarterRecord]:
        url = self.url_for(company)
        if not url:
            raise NotConfigured(f"No MoneyControl URL configured for {company}", source=SOURCE_NAME)
        return self.fetch_url(url, quarter_count, company)

    def fetch_url(self, url: str, quarter_count: int, company: str = "") -> List[QuarterRecord]:
        logger.info("[%s] Scraping %s from %s", SOURCE_NAME, company or "company", url)
        html = call_with_retry(lambda: self._load_page(url), SOURCE_NAME, self.policy, sleep_fn=self._sleep)
        quarters = parse_moneycontrol_quarters(html, quarter_count)
        logger.info(
            "[%s] Extracted %d quarters for %s, net sales: %s",
            SOURCE_NAME,
            len(quarters),
            company,
            [q.raw_indicators.get(NET_SALES) for q in quarters[:4]],
        )
        return quarters

    def _load_page(self, url: str) -> str:
        # A JavaScript-capable renderer plugs in here; it raises NetworkFailure on transport errors.
        if self._render is not None:
            return self._render(url)
        headers = dict(BROWSER_HEADERS, Connection="keep-alive")
        return get_once(url, SOURCE_NAME, self.policy.timeout, get_fn=self._get, headers=headers).text
