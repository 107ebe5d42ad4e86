import io
import json
import threading
from decimal import Decimal

import pytest

from costpuller import ingest
from costpuller.categories import AWS_BILLING_CATEGORIES, COST_MANAGEMENT_CATEGORIES
from costpuller.errors import FetchError
from costpuller.metrics import RunMetrics
from costpuller.report import write_csv, write_report
from costpuller.schemas import AccountConfig, CostMetric, FailureKind, Period

from .conftest import make_breakdown


class StubAdapter:
    def __init__(self, breakdowns, source="aws", category_map=AWS_BILLING_CATEGORIES, fail_for=None):
        self.breakdowns = breakdowns
        self.source = source
        self.category_map = category_map
        self.fail_for = fail_for
        self.fetched = []
        self.lock = threading.Lock()

    def fetch(self, account_id, period, metric):
        with self.lock:
            self.fetched.append((account_id, metric))
        if account_id == self.fail_for:
            raise FetchError(f"cannot reach source for {account_id}")
        return self.breakdowns[account_id]


GROUPS = {
    "zeta": [AccountConfig(account_id="3")],
    "alpha": [AccountConfig(account_id="2", standard_value=Decimal("10"), deviation_percent=5),
              AccountConfig(account_id="1")],
}

BREAKDOWNS = {
    "1": make_breakdown({"Tax": "1"}, account_id="1"),
    "2": make_breakdown({"EC2 - Other": "20"}, account_id="2"),
    "3": make_breakdown({"Amazon Route 53": "3"}, total="4", account_id="3"),
}


@pytest.fixture
def period():
    return Period.from_month("2024-03")


@pytest.mark.parametrize("workers", [1, 4])
def test_rows_in_stable_order_with_markers(period, workers):
    outcomes = ingest.ingest_once(GROUPS, StubAdapter(BREAKDOWNS), period, workers=workers)

    assert [o.account_id for o in outcomes] == ["2", "1", "3"]
    rows = ingest.build_rows(outcomes, GROUPS)
    assert [r[0] for r in rows if len(r) == 1] == ["alpha", "zeta"]
    assert [r[2] for r in rows if len(r) == 18] == ["2", "1", "3"]
    assert rows[0] == ["alpha"] and rows[3] == ["zeta"]


def test_failed_verdicts_continue_and_are_reported(period):
    outcomes = ingest.ingest_once(GROUPS, StubAdapter(BREAKDOWNS), period)
    kinds = {o.account_id: o.verdict.failure_kind for o in outcomes}
    assert kinds == {"2": FailureKind.DEVIATION_EXCEEDED, "1": FailureKind.NONE, "3": FailureKind.TOTALS_MISMATCH}

    lines = ingest.report_lines(outcomes)
    assert len(lines) == 2
    assert lines[0].startswith("2: deviation check failed")
    assert lines[1].startswith("3: total cost differs")
    # the row is still produced for flagged accounts
    assert outcomes[0].row.compute == "20.000000"


def test_fetch_error_is_fatal(period):
    with pytest.raises(FetchError):
        ingest.ingest_once(GROUPS, StubAdapter(BREAKDOWNS, fail_for="1"), period)
    with pytest.raises(FetchError):
        ingest.ingest_once(GROUPS, StubAdapter(BREAKDOWNS, fail_for="1"), period, workers=3)


def test_metric_passed_to_adapter(period):
    adapter = StubAdapter(BREAKDOWNS)
    ingest.ingest_once({"g": [AccountConfig(account_id="1")]}, adapter, period, CostMetric.NET_UNBLENDED)
    assert adapter.fetched == [("1", CostMetric.NET_UNBLENDED)]


def test_reconcile_against_second_source(period):
    secondary = StubAdapter({
        "1": make_breakdown({"AmazonEC2": "1.004"}, account_id="1"),
        "2": make_breakdown({"AmazonEC2": "19"}, account_id="2"),
        "3": make_breakdown({"AmazonRoute53": "3"}, account_id="3"),
    }, source="costmanagement", category_map=COST_MANAGEMENT_CATEGORIES)
    outcomes = ingest.ingest_once(GROUPS, StubAdapter(BREAKDOWNS), period, secondary=secondary)
    by_id = {o.account_id: o for o in outcomes}

    assert by_id["1"].reconciled is True
    assert by_id["2"].reconciled is False
    assert by_id["2"].secondary_total == Decimal("19")
    lines = ingest.report_lines(outcomes)
    assert "2: cross-source total mismatch (aws 20.00 vs costmanagement 19.00)" in lines


def test_secondary_breakdown_is_validated(period):
    groups = {"g": [AccountConfig(account_id="1")]}
    secondary = StubAdapter({
        "1": make_breakdown({"AmazonEC2": "1"}, total="5", units={"AmazonEC2": "EUR"}, account_id="1"),
    }, source="costmanagement", category_map=COST_MANAGEMENT_CATEGORIES)
    metrics = RunMetrics()
    outcomes = ingest.ingest_once(groups, StubAdapter(BREAKDOWNS), period, secondary=secondary, metrics=metrics)

    outcome = outcomes[0]
    assert outcome.verdict.passed
    assert outcome.secondary_verdict.failure_kind == FailureKind.UNIT_MISMATCH
    assert outcome.reconciled is True
    assert ingest.report_lines(outcomes) == [
        "1: costmanagement: service AmazonEC2 unit differs (EUR vs USD)"]
    assert metrics.registry.get_sample_value("costpuller_verdict_failures_total", {"kind": "unit_mismatch"}) == 1


def test_metrics_observe_outcomes(period):
    metrics = RunMetrics()
    ingest.ingest_once(GROUPS, StubAdapter(BREAKDOWNS), period, metrics=metrics)
    reg = metrics.registry
    assert reg.get_sample_value("costpuller_accounts_processed") == 3
    assert reg.get_sample_value("costpuller_account_total",
                                {"group": "alpha", "account": "2", "source": "aws"}) == 20.0
    assert reg.get_sample_value("costpuller_verdict_failures_total", {"kind": "totals_mismatch"}) == 1


def test_sinks():
    out = io.StringIO()
    assert write_csv(out, [["alpha"], ["a", "b,c"]]) == 2
    assert out.getvalue().splitlines() == ["alpha", 'a,"b,c"']
    report = io.StringIO()
    write_report(report, ["1: bad", "2: worse"])
    assert report.getvalue() == "1: bad\n2: worse\n"


def test_previous_month():
    import datetime as dt
    assert ingest.previous_month(dt.date(2024, 1, 15)) == "2023-12"


def test_main_aws_mode(tmp_path, monkeypatch):
    accounts = tmp_path / "accounts.yaml"
    accounts.write_text('alpha:\n  - accountid: "1"\n')
    out, report, prom = tmp_path / "out.csv", tmp_path / "report.txt", tmp_path / "metrics.prom"
    adapter = StubAdapter({"1": make_breakdown({"Tax": "2"}, total="3", account_id="1")})
    monkeypatch.setattr(ingest.aws_provider.AWSCostExplorerAdapter, "from_env", classmethod(lambda cls: adapter))

    rc = ingest.main(["--aws", "--month", "2024-03", "--accounts", str(accounts), "--out", str(out),
                      "--report", str(report), "--metrics-file", str(prom), "--costtype", "UnblendedCost"])

    assert rc == 0
    lines = out.read_text().splitlines()
    assert lines[0] == "alpha"
    assert lines[1].startswith("2024-03,1,1,PENDING")
    assert report.read_text().startswith("1: total cost differs")
    assert "costpuller_accounts_processed 1.0" in prom.read_text()
    assert adapter.fetched == [("1", CostMetric.UNBLENDED)]


def test_main_fatal_and_argument_errors(tmp_path, monkeypatch):
    accounts = tmp_path / "accounts.yaml"
    accounts.write_text('alpha:\n  - accountid: "1"\n')
    out = tmp_path / "out.csv"
    adapter = StubAdapter({}, fail_for="1")
    monkeypatch.setattr(ingest.aws_provider.AWSCostExplorerAdapter, "from_env", classmethod(lambda cls: adapter))

    common = ["--accounts", str(accounts), "--out", str(out), "--report", str(tmp_path / "r.txt")]
    assert ingest.main(["--aws", "--month", "2024-03"] + common) == 1
    assert not out.exists()
    assert ingest.main(["--aws"] + common) == 1
    assert ingest.main(common) == 1  # cost management needs a cookie


def test_main_metadata_prints_json(monkeypatch, capsys):
    monkeypatch.setattr(ingest.aws_provider, "fetch_account_metadata",
                        lambda: {"1": {"description": "team a", "status": "ACTIVE", "owner": "ops"}})

    assert ingest.main(["--metadata", "--accounts", "does-not-exist.yaml"]) == 0
    assert json.loads(capsys.readouterr().out) == {"1": {"description": "team a", "owner": "ops", "status": "ACTIVE"}}


def test_main_metadata_fetch_error(monkeypatch):
    def broken():
        raise FetchError("error getting aws account metadata: denied")

    monkeypatch.setattr(ingest.aws_provider, "fetch_account_metadata", broken)
    assert ingest.main(["--metadata"]) == 1
