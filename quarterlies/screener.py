import logging
import re
from difflib import SequenceMatcher
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

from .errors import NetworkFailure, NoMeaningfulData, ParseFailure
from .http_fetch import RetryPolicy, get_with_retry
from .models import DataSource, QuarterRecord
from .periods import to_canonical_period
from .table_parser import extract_rows, find_table, load_document, period_headers


logger = logging.getLogger(__name__)

SOURCE_NAME = DataSource.SCREENER.value
BASE_URL = "https://www.screener.in"
SEARCH_PATH = "/api/company/search/"

TABLE_MARKERS = ("Sales", "Operating Profit", "Net Profit")
SKIP_LABELS = {"raw pdf"}

COMPANY_SUFFIXES = [
    "Private Limited",
    "Pvt. Ltd.",
    "Pvt Ltd",
    "Limited",
    "Ltd.",
    "Ltd",
    "Pvt.",
    "Pvt",
    "Private",
    "Corporation",
    "Corp.",
    "Corp",
    "Incorporated",
    "Inc.",
    "Inc",
    "Company",
    "Co.",
    "Co",
]


def normalize_company_name(name: str) -> str:
    normalized = (name or "").strip()
    changed = True
    while changed:
        changed = False
        for suffix in COMPANY_SUFFIXES:
            stripped = re.sub(rf"\s+{re.escape(suffix)}\s*$", "", normalized, flags=re.IGNORECASE)
            if stripped != normalized:
                normalized = stripped
                changed = True
                break
    return re.sub(r"\s+", " ", normalized).strip()


def similarity_score(left: str, right: str) -> float:
    if not left and not right:
        return 1.0
    return SequenceMatcher(None, left.lower(), right.lower()).ratio()


def parse_screener_quarters(html: str, quarter_count: int) -> List[QuarterRecord]:
    soup = load_document(html)
    table = find_table(soup, lambda text: all(marker in text for marker in TABLE_MARKERS))
    if table is None:
        raise ParseFailure("Could not find quarterly results table", source=SOURCE_NAME)

    headers = period_headers(table)
    if not headers:
        raise ParseFailure("Quarterly results table has no period headers", source=SOURCE_NAME)

    rows = extract_rows(table, len(headers), skip_labels=lambda label: label.lower() in SKIP_LABELS)
    quarters: List[QuarterRecord] = []
    for idx, header in enumerate(headers):
        indicators = {name: values[idx] for name, values in rows.items() if idx < len(values)}
        if not indicators:
            continue
        quarters.append(
            QuarterRecord(
                native_period_label=header,
                canonical_period=to_canonical_period(header),
                raw_indicators=indicators,
            )
        )
    # The page lists oldest first.
    quarters.reverse()
    return quarters[:quarter_count] if quarter_count > 0 else quarters


class ScreenerSource:
    name = DataSource.SCREENER

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        get_fn: Optional[Callable[..., Any]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
        base_url: str = BASE_URL,
    ) -> None:
        self.policy = policy or RetryPolicy(timeout=30)
        self.base_url = base_url.rstrip("/")
        self._get = get_fn
        self._sleep = sleep_fn

    def search(self, query: str) -> List[Dict[str, str]]:
        resp = get_with_retry(
            f"{self.base_url}{SEARCH_PATH}",
            SOURCE_NAME,
            policy=self.policy,
            get_fn=self._get,
            sleep_fn=self._sleep,
            params={"q": query},
        )
        try:
            payload = resp.json()
        except ValueError:
            raise ParseFailure(f"Search response for {query!r} is not JSON", source=SOURCE_NAME)
        if not isinstance(payload, list):
            return []
        hits: List[Dict[str, str]] = []
        for item in payload:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            hits.append(
                {
                    "name": str(item.get("name", "")).strip(),
                    "url": urljoin(self.base_url + "/", str(item["url"]).lstrip("/")),
                }
            )
        return hits

    def resolve_company(self, company: str) -> Optional[Dict[str, str]]:
        hits = self.search(company)
        if not hits:
            normalized = normalize_company_name(company)
            if normalized and normalized != company:
                hits = self.search(normalized)
        return hits[0] if hits else None

    def fetch(self, company: str, quarter_count: int) -> List[QuarterRecord]:
        logger.info("[%s] Searching for %r", SOURCE_NAME, company)
        match = self.resolve_company(company)
        if match is None:
            raise NoMeaningfulData(f"Could not find company: {company}", source=SOURCE_NAME)
        logger.info("[%s] Scraping %s from %s", SOURCE_NAME, match["name"] or company, match["url"])
        resp = get_with_retry(
            match["url"],
            SOURCE_NAME,
            policy=self.policy,
            get_fn=self._get,
            sleep_fn=self._sleep,
        )
        quarters = parse_screener_quarters(resp.text, quarter_count)
        logger.info("[%s] Extracted %d quarters for %s", SOURCE_NAME, len(quarters), company)
        return quarters

    def validate_company_name(self, name: str, limit: int = 5) -> Dict[str, Any]:
        normalized_name = normalize_company_name(name)
        suggestions = self._scored_suggestions(name, normalized_name, limit)
        if not suggestions and normalized_name != name:
            suggestions = self._scored_suggestions(normalized_name, normalized_name, limit)
        top = suggestions[0]["score"] if suggestions else 0.0
        return {
            "exists": top > 0.7,
            "exact_match": suggestions[0]["name"] if top > 0.9 else None,
            "suggestions": suggestions,
            "normalized_name": normalized_name,
        }

    def _scored_suggestions(self, query: str, normalized_query: str, limit: int) -> List[Dict[str, Any]]:
        try:
            hits = self.search(query)
        except (NetworkFailure, ParseFailure) as exc:
            logger.warning("[%s] Search failed for %r: %s", SOURCE_NAME, query, exc)
            return []
        scored = [
            {
                "name": hit["name"],
                "url": hit["url"],
                "score": similarity_score(normalized_query, normalize_company_name(hit["name"])),
            }
            for hit in hits
        ]
        scored.sort(key=lambda item: item["score"], reverse=True)
        return scored[:limit]
