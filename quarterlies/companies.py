import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .screener import normalize_company_name


@dataclass(frozen=True)
class CompanyTarget:
    name: str
    moneycontrol_url: str = ""


DEFAULT_COMPANIES = [
    CompanyTarget("TCS", "https://www.moneycontrol.com/markets/financials/quarterly-results/tataconsultancyservices-TCS/"),
    CompanyTarget("Persistent", "https://www.moneycontrol.com/markets/financials/quarterly-results/persistentsystems-PS01/"),
    CompanyTarget("Tech Mahindra", "https://www.moneycontrol.com/markets/financials/quarterly-results/techmahindra-TM4/"),
    CompanyTarget("Cyient", "https://www.moneycontrol.com/markets/financials/quarterly-results/cyient-C/"),
    CompanyTarget("Infosys", "https://www.moneycontrol.com/markets/financials/quarterly-results/infosys-IT/"),
    CompanyTarget("LTIMindtree", "https://www.moneycontrol.com/markets/financials/quarterly-results/ltimindtree-LTI01/"),
    CompanyTarget("Wipro", "https://www.moneycontrol.com/markets/financials/quarterly-results/wipro-W/"),
    CompanyTarget("L&T Technology Services", "https://www.moneycontrol.com/markets/financials/quarterly-results/lttechnologyservices-LTS/"),
    CompanyTarget("Coforge", "https://www.moneycontrol.com/markets/financials/quarterly-results/coforge-NI3/"),
    CompanyTarget("Mphasis", "https://www.moneycontrol.com/markets/financials/quarterly-results/mphasis-M02/"),
    CompanyTarget("Zensar", "https://www.moneycontrol.com/markets/financials/quarterly-results/zensartechnologies-ZT/"),
    CompanyTarget("Hexaware", "https://www.moneycontrol.com/markets/financials/quarterly-results/hexawaretechnologies-HT06/"),
    CompanyTarget("Birlasoft", "https://www.moneycontrol.com/markets/financials/quarterly-results/birlasoft-BS15/"),
]

DEFAULT_TEST_COMPANY = "TCS"


def _catalog_key(name: str) -> str:
    return normalize_company_name(name).lower()


class CompanyCatalog:
    def __init__(self, companies: Optional[Iterable[CompanyTarget]] = None) -> None:
        self._by_key: Dict[str, CompanyTarget] = {}
        for company in DEFAULT_COMPANIES if companies is None else companies:
            self.add(company)

    @classmethod
    def from_file(cls, path: str) -> "CompanyCatalog":
        catalog = cls()
        if not path:
            return catalog
        file_path = Path(path).expanduser()
        if not file_path.exists():
            raise ValueError(f"Company catalog not found: {file_path}")
        entries = json.loads(file_path.read_text(encoding="utf-8"))
        if not isinstance(entries, list):
            raise ValueError("Company catalog must be a JSON list")
        for entry in entries:
            if not isinstance(entry, dict) or not str(entry.get("name", "")).strip():
                continue
            catalog.add(
                CompanyTarget(
                    name=str(entry["name"]).strip(),
                    moneycontrol_url=str(entry.get("moneycontrol_url", "") or "").strip(),
                )
            )
        return catalog

    def add(self, company: CompanyTarget) -> None:
        self._by_key[_catalog_key(company.name)] = company

    def get(self, name: str) -> Optional[CompanyTarget]:
        return self._by_key.get(_catalog_key(name))

    def moneycontrol_url(self, name: str) -> str:
        company = self.get(name)
        return company.moneycontrol_url if company else ""

    def resolve(self, names: Iterable[str]) -> List[CompanyTarget]:
        targets: List[CompanyTarget] = []
        seen = set()
        for raw in names:
            name = (raw or "").strip()
            if not name or _catalog_key(name) in seen:
                continue
            seen.add(_catalog_key(name))
            known = self.get(name)
            targets.append(CompanyTarget(name, known.moneycontrol_url if known else ""))
        return targets

    def names(self) -> List[str]:
        return [company.name for company in self._by_key.values()]
