import json
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .errors import ParseFailure
from .indicators import normalize_indicator_map, to_indicator_value
from .models import DataSource, QuarterRecord
from .periods import (
    current_fiscal_quarter,
    fiscal_quarter_from_parts,
    parse_canonical_period,
    previous_quarters,
    requested_periods,
    to_canonical_period,
)


logger = logging.getLogger(__name__)

SOURCE_NAME = DataSource.PERPLEXITY.value
EXTRACTION_MAX_TOKENS = 8000
URL_MAX_TOKENS = 200

LABEL_FIELDS = ("quarter", "quarter_name", "period")
MONEYCONTROL_URL_RE = re.compile(r"https://www\.moneycontrol\.com/[^\s\"'<>]+")

SYSTEM_PROMPT = """You are a financial data extraction expert. Extract quarterly financial data from MoneyControl and Screener.in for Indian listed companies.

IMPORTANT: Return data for MULTIPLE quarters, not just the latest one.

FISCAL YEAR: India uses April-March fiscal year.
- Q1: Apr-Jun, Q2: Jul-Sep, Q3: Oct-Dec, Q4: Jan-Mar

RETURN: JSON only, no markdown."""

URL_SYSTEM_PROMPT = (
    "You are a financial data expert. Return ONLY the exact MoneyControl quarterly results URL "
    "for the requested company. No explanation, just the URL."
)


def _period_lines(labels: List[str]) -> List[str]:
    lines = []
    for idx, label in enumerate(labels, start=1):
        quarter_number, fiscal_year = parse_canonical_period(label)
        fq = fiscal_quarter_from_parts(quarter_number, fiscal_year)
        lines.append(f"{idx}. Q{quarter_number} FY{fiscal_year % 100:02d} ({fq.period_text}) - format as \"{label}\"")
    return lines


def build_extraction_prompt(company: str, labels: List[str]) -> str:
    example = {
        "company": company,
        "quarters": [
            {"quarter": label, "data": {"Revenue": 0, "Operating Profit": 0, "Net Profit": 0}}
            for label in labels[:2]
        ],
    }
    return "\n".join(
        [
            f'Search for "{company} quarterly results" on MoneyControl and Screener.in.',
            "",
            f"I need historical quarterly financial data for {company}.",
            "",
            "Find data for THESE SPECIFIC quarters:",
            *_period_lines(labels),
            "",
            "For each quarter, extract (in Rs. Crores):",
            "- Revenue",
            "- Operating Profit",
            "- Employees Cost, Other Expenses, Depreciation, Interest, Other Income",
            "- Profit before tax",
            "- Net Profit",
            "Use null for any value you cannot find. Never invent numbers.",
            "",
            "Return JSON with ALL quarters you can find, shaped like:",
            json.dumps(example, ensure_ascii=False),
        ]
    )


def extract_json_text(content: str) -> str:
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", content)
    if fenced:
        return fenced.group(1)
    start = content.find("{")
    if start == -1:
        return content.strip()
    end = content.rfind("}")
    # A truncated payload may have no closing brace at all.
    return content[start : end + 1] if end > start else content[start:]


def _scan_outside_strings(text: str) -> Tuple[List[str], List[int]]:
    """Return the unclosed ``{``/``[`` stack and the offsets of commas outside string literals."""
    stack: List[str] = []
    commas: List[int] = []
    in_string = False
    escaped = False
    for idx, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append(char)
        elif char in "}]" and stack:
            stack.pop()
        elif char == ",":
            commas.append(idx)
    return stack, commas


def _close_brackets(text: str) -> str:
    repaired = text.rstrip()
    repaired = re.sub(r",\s*$", "", repaired)
    repaired = re.sub(r',\s*"[^"]*"\s*:\s*$', "", repaired)
    repaired = re.sub(r',\s*"[^"]*"?\s*$', "", repaired)
    repaired = re.sub(r",\s*\{[^}]*$", "", repaired)
    stack, _ = _scan_outside_strings(repaired)
    closers = {"{": "}", "[": "]"}
    return repaired + "".join(closers[c] for c in reversed(stack))


def repair_truncated_json(text: str) -> str:
    candidate = text.rstrip()
    _, commas = _scan_outside_strings(candidate)
    # Walk back one comma at a time until the tail is a complete value.
    for cut in [len(candidate)] + commas[::-1]:
        repaired = _close_brackets(candidate[:cut])
        try:
            json.loads(repaired)
        except json.JSONDecodeError:
            continue
        return repaired
    return _close_brackets(candidate)


def parse_json_payload(content: str) -> Dict[str, Any]:
    text = extract_json_text(content)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        logger.info("[%s] Attempting to repair truncated JSON", SOURCE_NAME)
        try:
            payload = json.loads(repair_truncated_json(text))
        except json.JSONDecodeError as exc:
            raise ParseFailure(f"Response is not valid JSON after repair: {exc}", source=SOURCE_NAME)
    if not isinstance(payload, dict):
        raise ParseFailure("Response JSON is not an object", source=SOURCE_NAME)
    return payload


def _quarter_label(entry: Dict[str, Any]) -> str:
    for key in LABEL_FIELDS:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _indicator_values(entry: Dict[str, Any]) -> Dict[str, Any]:
    nested = entry.get("data")
    if nested is None:
        nested = entry.get("indicators")
    raw: Dict[str, Any] = {}
    if isinstance(nested, dict):
        for key, value in nested.items():
            if isinstance(value, (dict, list)):
                continue
            raw[str(key)] = to_indicator_value(value)
        return normalize_indicator_map(raw)
    # Flat entries carry the numbers next to the label.
    for key, value in entry.items():
        if key in LABEL_FIELDS:
            continue
        if value is None or (isinstance(value, (int, float)) and not isinstance(value, bool)):
            raw[str(key)] = to_indicator_value(value)
    return normalize_indicator_map(raw)


def parse_ai_quarters(payload: Dict[str, Any], quarter_count: int = 0) -> List[QuarterRecord]:
    entries = payload.get("quarters")
    if not isinstance(entries, list):
        raise ParseFailure("Invalid response structure - missing quarters array", source=SOURCE_NAME)

    quarters: List[QuarterRecord] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        label = _quarter_label(entry)
        if not label:
            continue
        quarters.append(
            QuarterRecord(
                native_period_label=label,
                canonical_period=to_canonical_period(label),
                raw_indicators=_indicator_values(entry),
            )
        )
    return quarters[:quarter_count] if quarter_count > 0 else quarters


class PerplexitySource:
    """Asks a search-grounded language model for the quarterly figures."""

    name = DataSource.PERPLEXITY

    def __init__(self, llm, today: Optional[date] = None) -> None:
        self.llm = llm
        self.today = today

    def target_periods(
        self,
        quarter_count: int,
        requested_quarters: Optional[List[Any]] = None,
        requested_fiscal_years: Optional[List[int]] = None,
    ) -> List[str]:
        if requested_quarters and requested_fiscal_years:
            labels = requested_periods(requested_quarters, requested_fiscal_years, self.today)
            if labels:
                return labels
        current = current_fiscal_quarter(self.today)
        return [fq.label for fq in previous_quarters(current, max(quarter_count, 1))]

    def fetch(
        self,
        company: str,
        quarter_count: int,
        requested_quarters: Optional[List[Any]] = None,
        requested_fiscal_years: Optional[List[int]] = None,
    ) -> List[QuarterRecord]:
        labels = self.target_periods(quarter_count, requested_quarters, requested_fiscal_years)
        logger.info("[%s] Extracting quarters %s for %s", SOURCE_NAME, ", ".join(labels), company)
        completion = self.llm.complete(
            [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_extraction_prompt(company, labels)},
            ],
            temperature=0.0,
            max_tokens=EXTRACTION_MAX_TOKENS,
        )
        if not completion.text.strip():
            raise ParseFailure("Empty response from model", source=SOURCE_NAME)
        quarters = parse_ai_quarters(parse_json_payload(completion.text), max(quarter_count, len(labels)))
        logger.info("[%s] Parsed %d quarters for %s", SOURCE_NAME, len(quarters), company)
        return quarters

    def resolve_source_url(self, company: str) -> Optional[str]:
        logger.info("[%s] Looking up MoneyControl URL for %s", SOURCE_NAME, company)
        completion = self.llm.complete(
            [
                {"role": "system", "content": URL_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"What is the exact MoneyControl quarterly results page URL for {company} "
                        "(Indian listed company)? Return ONLY the URL."
                    ),
                },
            ],
            temperature=0.0,
            max_tokens=URL_MAX_TOKENS,
        )
        match = MONEYCONTROL_URL_RE.search(completion.text or "")
        logger.info("[%s] Found URL: %s", SOURCE_NAME, match.group(0) if match else "none")
        return match.group(0) if match else None
