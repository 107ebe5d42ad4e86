import datetime as dt
from decimal import Decimal

import pytest

from costpuller.accounts import load_account_groups, parse_account_groups
from costpuller.cookies import parse_curl_cookie
from costpuller.errors import ParseError
from costpuller.schemas import Period

ACCOUNTS_YAML = """
zeta:
  - accountid: "000000000003"
alpha:
  - accountid: 123456789012
    standardvalue: 100.5
    deviationpercent: 5
  - accountid: "000000000001"
"""


def test_load_sorts_groups_and_keeps_account_order(tmp_path):
    path = tmp_path / "accounts.yaml"
    path.write_text(ACCOUNTS_YAML)
    groups = load_account_groups(str(path))

    assert list(groups) == ["alpha", "zeta"]
    assert [a.account_id for a in groups["alpha"]] == ["123456789012", "000000000001"]
    first = groups["alpha"][0]
    assert first.category == "alpha"
    assert first.standard_value == Decimal("100.5")
    assert first.deviation_percent == 5
    assert not groups["alpha"][1].has_baseline


@pytest.mark.parametrize("raw", [["not", "a", "mapping"], {"g": "nope"}, {"g": [{"standardvalue": 1}]}])
def test_invalid_account_files(raw):
    with pytest.raises(ValueError):
        parse_account_groups(raw)


def test_empty_group_is_kept():
    assert parse_account_groups({"g": None}) == {"g": []}


def test_period_from_month():
    p = Period.from_month("2023-12")
    assert (p.start, p.end, p.last_day, p.label) == (
        dt.date(2023, 12, 1), dt.date(2024, 1, 1), dt.date(2023, 12, 31), "2023-12")
    assert Period.from_month("2024-02").last_day == dt.date(2024, 2, 29)
    with pytest.raises(ParseError):
        Period.from_month("03/2024")


def test_parse_curl_cookie():
    assert parse_curl_cookie("a=1; cs_jwt=x=y;b=") == {"a": "1", "cs_jwt": "x=y", "b": ""}
    with pytest.raises(ValueError):
        parse_curl_cookie("novalue")
    with pytest.raises(ValueError):
        parse_curl_cookie("  ")


def test_period_label_is_zero_padded():
    p = Period.from_month("2024-3")
    assert p.label == "2024-03"
    assert p.start == dt.date(2024, 3, 1)
