import math
import re
from typing import Any, Dict, Iterable, List, Optional


UNAVAILABLE = "--"

PLACEHOLDER_VALUES = {"", "-", "--", "—", "–", "na", "n/a", "null", "none", "nan"}

TOTAL_INCOME = "Total Income From Operations"
NET_SALES = "Net Sales / Income from Operations"
PURCHASE_OF_TRADED_GOODS = "Purchase of Traded Goods"
STOCK_CHANGE = "Increase / Decrease in Stocks"
EMPLOYEES_COST = "Employees Cost"
DEPRECIATION = "Depreciation"
OTHER_EXPENSES = "Other Expenses"
OTHER_INCOME = "Other Income"
INTEREST = "Interest"
PBT_REPORTED = "P/L Before Tax"
NET_PROFIT = "Net Profit / (Loss) for the Period"
OPERATING_PROFIT = "Operating Profit"

REVENUE_KEYS = [
    NET_SALES,
    "Revenue",
    "Net Sales",
    "Sales",
    "Income",
    TOTAL_INCOME,
]

NET_PROFIT_KEYS = [
    NET_PROFIT,
    "Net Profit",
    "Profit",
    "PAT",
    "Net_Profit",
]

DIRECT_EBITDA_KEYS = ["Op. EBITDA", OPERATING_PROFIT]
DIRECT_PBT_KEYS = [PBT_REPORTED, "Profit before tax"]

# General corporates (IT, manufacturing).
CORPORATE_SYNONYMS = {
    "net sales/income from operations": NET_SALES,
    "revenue from operations": NET_SALES,
    "revenue": NET_SALES,
    "revenue crores": NET_SALES,
    "net sales": NET_SALES,
    "sales": TOTAL_INCOME,
    "total income from operations": TOTAL_INCOME,
    "other operating income": "Other Operating Income",
    "employees cost": EMPLOYEES_COST,
    "employee cost": EMPLOYEES_COST,
    "employeecost": EMPLOYEES_COST,
    "employee benefit expenses": EMPLOYEES_COST,
    "depreciation": DEPRECIATION,
    "depreciation and amortisation expenses": DEPRECIATION,
    "depreciation and amortization": DEPRECIATION,
    "other expenses": OTHER_EXPENSES,
    "other income": OTHER_INCOME,
    "interest": INTEREST,
    "finance costs": INTEREST,
    "operating profit": OPERATING_PROFIT,
    "operatingprofit": OPERATING_PROFIT,
    "opm %": "OPM %",
    "p/l before other inc., int., excpt. items & tax": "P/L Before Other Inc., Int., Excpt. Items & Tax",
    "p/l before int., excpt. items & tax": "P/L Before Int., Excpt. Items & Tax",
    "p/l before interest, excpt. items & tax": "P/L Before Int., Excpt. Items & Tax",
    "ebit": "P/L Before Int., Excpt. Items & Tax",
    "op ebit": "P/L Before Int., Excpt. Items & Tax",
    "p/l before exceptional items & tax": "P/L Before Exceptional Items & Tax",
    "exceptional items": "Exceptional Items",
    "p/l before tax": PBT_REPORTED,
    "profit before tax": PBT_REPORTED,
    "profitbeforetax": PBT_REPORTED,
    "pbt": PBT_REPORTED,
    "tax": "Tax",
    "tax expenses": "Tax",
    "tax %": "Tax %",
    "p/l after tax from ordinary activities": "P/L After Tax from Ordinary Activities",
    "profit after tax": "P/L After Tax from Ordinary Activities",
    "net profit/(loss) for the period": NET_PROFIT,
    "net profit": NET_PROFIT,
    "net profit crores": NET_PROFIT,
    "netprofit": NET_PROFIT,
    "pat": NET_PROFIT,
    "minority interest": "Minority Interest",
    "net p/l after m.i & associates": "Net P/L After MI & Associates",
    "basic eps": "Basic EPS",
    "diluted eps": "Diluted EPS",
    "eps in rs": "Basic EPS",
    "purchase of traded goods": PURCHASE_OF_TRADED_GOODS,
    "increase/decrease in stocks": STOCK_CHANGE,
    "consumption of raw materials": "Consumption of Raw Materials",
    "power & fuel": "Power & Fuel",
    "excise duty": "Excise Duty",
    "admin. and selling expenses": "Admin. And Selling Expenses",
    "r & d expenses": "R & D Expenses",
    "provisions and contingencies": "Provisions And Contingencies",
    "exp. capitalised": "Exp. Capitalised",
}

# Banking and financial services.
BANKING_SYNONYMS = {
    "net interest income": "Net Interest Income",
    "interest income": "Interest Income",
    "interest earned": "Interest Income",
    "interest expended": "Interest Expended",
    "interest expense": "Interest Expended",
    "fee income": "Fee Income",
    "total income": "Total Income",
    "operating expenses": "Operating Expenses",
    "employee expenses": EMPLOYEES_COST,
    "provisions": "Provisions",
    "provisions for bad debts": "Provisions",
    "provision for npa": "Provisions",
    "profit before provisions": "Profit Before Provisions",
    "net profit after tax": NET_PROFIT,
    "total assets": "Total Assets",
    "total deposits": "Total Deposits",
    "total advances": "Total Advances",
    "gross npa": "Gross NPA",
    "net npa": "Net NPA",
    "casa ratio": "CASA Ratio",
    "net interest margin": "Net Interest Margin",
    "nim": "Net Interest Margin",
}


def _lookup_key(label: str) -> str:
    key = re.sub(r"\s+", " ", str(label)).strip().lower()
    return re.sub(r"\s*/\s*", "/", key)


def _build_synonym_table() -> Dict[str, str]:
    table: Dict[str, str] = {}
    for family in (CORPORATE_SYNONYMS, BANKING_SYNONYMS):
        for synonym, canonical in family.items():
            table[_lookup_key(synonym)] = canonical
    # Canonical names must map to themselves so normalizing twice is a no-op.
    for canonical in set(table.values()):
        table.setdefault(_lookup_key(canonical), canonical)
    return table


SYNONYM_TABLE = _build_synonym_table()
CANONICAL_INDICATORS = frozenset(SYNONYM_TABLE.values())


def normalize_indicator(label: str) -> str:
    key = _lookup_key(label)
    if key in SYNONYM_TABLE:
        return SYNONYM_TABLE[key]
    # snake_case / kebab-case keys from JSON payloads
    relaxed = _lookup_key(re.sub(r"[_\-]+", " ", key))
    if relaxed in SYNONYM_TABLE:
        return SYNONYM_TABLE[relaxed]
    return label


def normalize_indicator_map(raw: Dict[str, Any]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for label, value in raw.items():
        name = normalize_indicator(label)
        # First non-placeholder value wins when two source labels collapse onto one name.
        if name in normalized and (is_unavailable(value) or not is_unavailable(normalized[name])):
            continue
        normalized[name] = value
    return normalized


def is_unavailable(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and not math.isfinite(value):
        return True
    if isinstance(value, str):
        return value.strip().lower() in PLACEHOLDER_VALUES
    return False


def coerce_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    cleaned = str(value).strip()
    if cleaned.lower() in PLACEHOLDER_VALUES:
        return None
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    cleaned = cleaned.replace("(", "").replace(")", "")
    cleaned = cleaned.replace(",", "").replace("%", "")
    cleaned = cleaned.replace("$", "").replace("₹", "").replace("¥", "")
    cleaned = cleaned.replace("−", "-").replace("–", "-").strip()
    if not re.fullmatch(r"-?\d+(?:\.\d+)?", cleaned):
        return None
    number = float(cleaned)
    if negative and number > 0:
        number = -number
    return number


def to_indicator_value(value: Any) -> Any:
    number = coerce_number(value)
    return UNAVAILABLE if number is None else number


def first_available(raw: Dict[str, Any], keys: Iterable[str]) -> Optional[float]:
    for key in keys:
        number = coerce_number(raw.get(key))
        if number is not None:
            return number
    return None


def has_meaningful_data(quarters: List[Any]) -> bool:
    """True when any quarter carries a real revenue-family or net-profit-family value."""
    for quarter in quarters:
        indicators = getattr(quarter, "raw_indicators", None) or {}
        if first_available(indicators, REVENUE_KEYS) is not None:
            return True
        if first_available(indicators, NET_PROFIT_KEYS) is not None:
            return True
    return False
