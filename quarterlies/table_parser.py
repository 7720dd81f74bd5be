import re
from typing import Callable, Dict, List, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from .indicators import coerce_number, normalize_indicator, to_indicator_value


MONTH_YEAR_RE = re.compile(r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\s*'?\s*\d{2}", re.IGNORECASE)


def load_document(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def cell_texts(row: Tag) -> List[str]:
    return [cell.get_text(" ", strip=True) for cell in row.find_all(["td", "th"])]


def find_table(soup: BeautifulSoup, accept: Callable[[str], bool]) -> Optional[Tag]:
    for table in soup.find_all("table"):
        if accept(table.get_text(" ", strip=True)):
            return table
    return None


def is_period_label(text: str) -> bool:
    return bool(MONTH_YEAR_RE.search(text or ""))


def period_headers(table: Tag) -> List[str]:
    """Period labels from the first row that carries any month-year label."""
    for row in table.find_all("tr"):
        labels = [text for text in cell_texts(row) if is_period_label(text)]
        if labels:
            return labels
    return []


def data_start_index(cells: List[str], header_count: int) -> int:
    # Known fragility: some page variants put a trend/sparkline column between
    # the label and the first quarter. A numeric cell at index 1 is data; a row
    # with exactly one cell per header has no trend column either.
    if len(cells) > 1 and coerce_number(cells[1]) is not None:
        return 1
    if header_count and len(cells) - 1 == header_count:
        return 1
    return 2


def extract_rows(
    table: Tag,
    header_count: int,
    skip_labels: Optional[Callable[[str], bool]] = None,
    min_cells: int = 2,
) -> Dict[str, List[object]]:
    """Map normalized indicator name -> values aligned with the header columns."""
    rows: Dict[str, List[object]] = {}
    for row in table.find_all("tr"):
        cells = cell_texts(row)
        if len(cells) < min_cells:
            continue
        # Expandable rows render as "Sales +".
        label = re.sub(r"\s*\+$", "", cells[0].replace("\xa0", " ")).strip()
        if not label or is_period_label(label):
            continue
        if skip_labels and skip_labels(label):
            continue
        start = data_start_index(cells, header_count)
        values = [to_indicator_value(text) for text in cells[start : start + header_count]]
        name = normalize_indicator(label)
        if name in rows:
            continue
        rows[name] = values
    return rows
