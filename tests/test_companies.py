import json

import pytest

from quarterlies.companies import DEFAULT_COMPANIES, CompanyCatalog, CompanyTarget


def test_default_catalog_lookup_is_case_and_suffix_insensitive():
    catalog = CompanyCatalog()
    assert len(catalog.names()) == len(DEFAULT_COMPANIES)
    url = catalog.moneycontrol_url("Infosys")
    assert url.startswith("https://www.moneycontrol.com/")
    assert catalog.moneycontrol_url("infosys limited") == url
    assert catalog.moneycontrol_url("Unknown Co") == ""


def test_resolve_keeps_requested_names_and_attaches_urls():
    catalog = CompanyCatalog([CompanyTarget("Wipro", "https://www.moneycontrol.com/wipro")])
    targets = catalog.resolve(["Wipro Ltd", " ", "Acme"])
    assert targets == [
        CompanyTarget("Wipro Ltd", "https://www.moneycontrol.com/wipro"),
        CompanyTarget("Acme", ""),
    ]


def test_resolve_drops_repeated_names_case_insensitively():
    catalog = CompanyCatalog([CompanyTarget("Wipro", "https://www.moneycontrol.com/wipro")])
    targets = catalog.resolve(["Wipro", "wipro ", "Acme", "WIPRO Ltd", "acme"])
    assert [t.name for t in targets] == ["Wipro", "Acme"]


def test_from_file_extends_defaults(tmp_path):
    path = tmp_path / "companies.json"
    path.write_text(
        json.dumps(
            [
                {"name": "Acme Software", "moneycontrol_url": "https://www.moneycontrol.com/acme"},
                {"name": "TCS", "moneycontrol_url": ""},
                {"moneycontrol_url": "https://www.moneycontrol.com/nameless"},
            ]
        ),
        encoding="utf-8",
    )
    catalog = CompanyCatalog.from_file(str(path))
    assert catalog.moneycontrol_url("Acme Software") == "https://www.moneycontrol.com/acme"
    assert catalog.moneycontrol_url("TCS") == ""
    assert catalog.moneycontrol_url("Wipro").startswith("https://www.moneycontrol.com/")


def test_from_file_rejects_missing_or_malformed_files(tmp_path):
    with pytest.raises(ValueError):
        CompanyCatalog.from_file(str(tmp_path / "missing.json"))
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"name": "TCS"}), encoding="utf-8")
    with pytest.raises(ValueError):
        CompanyCatalog.from_file(str(bad))
