import os
import sys
import json
import logging
import argparse
import datetime as dt
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_EXCEPTION
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from .accounts import DEFAULT_ACCOUNTS_FILE, AccountGroups, load_account_groups
from .cookies import parse_curl_cookie
from .errors import CrossSourceMismatchError, FatalError
from .metrics import RunMetrics
from .normalizer import CategoryNormalizer
from .providers import aws as aws_provider
from .providers import costmanagement as cm_provider
from .providers.base import CostSourceAdapter
from .reconcile import CrossSourceReconciler
from .report import assemble, write_csv, write_report
from .schemas import AccountConfig, ConsistencyVerdict, CostMetric, Period, ReportRow
from .validator import ConsistencyValidator

LOG = logging.getLogger(__name__)


class AccountOutcome(BaseModel):
    """Everything one account produced in a run. Fatal errors never end up here."""
    model_config = ConfigDict(frozen=True)

    group: str
    position: int
    account_id: str
    source: str
    row: ReportRow
    verdict: ConsistencyVerdict
    secondary_source: Optional[str] = None
    secondary_verdict: Optional[ConsistencyVerdict] = None
    secondary_total: Optional[Decimal] = None
    reconciled: Optional[bool] = None
    mismatch_message: str = ""

    def report_lines(self) -> List[str]:
        lines = []
        if not self.verdict.passed:
            lines.append(self.verdict.report_line())
        if self.secondary_verdict is not None and not self.secondary_verdict.passed:
            lines.append(f"{self.account_id}: {self.secondary_source}: {self.secondary_verdict.message}")
        if self.reconciled is False:
            lines.append(f"{self.account_id}: {self.mismatch_message}")
        return lines


def process_account(group: str, position: int, account: AccountConfig, primary: CostSourceAdapter,
                    period: Period, metric: CostMetric, secondary: Optional[CostSourceAdapter] = None,
                    validator: Optional[ConsistencyValidator] = None,
                    reconciler: Optional[CrossSourceReconciler] = None) -> AccountOutcome:
    validator = validator or ConsistencyValidator()
    LOG.info("pulling data for account %s (group %s)", account.account_id, group)
    breakdown = primary.fetch(account.account_id, period, metric)
    verdict = validator.validate(breakdown, account)
    row = CategoryNormalizer(primary.category_map).normalize(breakdown, breakdown.period_label, account.account_id)
    outcome = dict(group=group, position=position, account_id=account.account_id,
                   source=primary.source, row=row, verdict=verdict)
    if secondary is not None:
        reconciler = reconciler or CrossSourceReconciler()
        other = secondary.fetch(account.account_id, period, metric)
        other_verdict = validator.validate(other, account)
        outcome.update(secondary_source=secondary.source, secondary_total=other_verdict.total,
                       secondary_verdict=other_verdict)
        try:
            reconciler.check(account.account_id, verdict.total, other_verdict.total, primary.source, secondary.source)
            outcome["reconciled"] = True
        except CrossSourceMismatchError as e:
            LOG.warning("account %s: %s", account.account_id, e)
            outcome.update(reconciled=False, mismatch_message=str(e))
    return AccountOutcome(**outcome)


def ingest_once(groups: Mapping[str, Sequence[AccountConfig]], primary: CostSourceAdapter, period: Period,
                metric: CostMetric = CostMetric.BLENDED, secondary: Optional[CostSourceAdapter] = None,
                workers: int = 1, metrics: Optional[RunMetrics] = None) -> List[AccountOutcome]:
    """Runs every configured account through fetch/validate/normalize (and reconcile).

    Groups are visited in sorted key order, accounts in listed order. With more
    than one worker the accounts run in a thread pool and the outcomes are put
    back in that order afterwards. A fatal error stops the run and propagates.
    """
    tasks = [(group, position, account)
             for group in sorted(groups)
             for position, account in enumerate(groups[group])]

    def run(task):
        group, position, account = task
        return process_account(group, position, account, primary, period, metric, secondary)

    if workers <= 1:
        outcomes = [run(t) for t in tasks]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(run, t) for t in tasks]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for f in pending:
                f.cancel()
            outcomes = [f.result() for f in futures if not f.cancelled()]
        outcomes.sort(key=lambda o: (o.group, o.position))

    if metrics is not None:
        for o in outcomes:
            metrics.observe(o)
    failed = sum(1 for o in outcomes if o.report_lines())
    LOG.info("processed %d accounts, %d flagged for review", len(outcomes), failed)
    return outcomes


def build_rows(outcomes: Iterable[AccountOutcome], group_names: Iterable[str]) -> List[List[str]]:
    by_group = {}
    for o in outcomes:
        by_group.setdefault(o.group, []).append(o.row)
    return assemble((g, by_group.get(g, [])) for g in sorted(group_names))


def report_lines(outcomes: Iterable[AccountOutcome]) -> List[str]:
    return [line for o in outcomes for line in o.report_lines()]


def previous_month(today: Optional[dt.date] = None) -> str:
    today = today or dt.date.today()
    return (today.replace(day=1) - dt.timedelta(days=1)).strftime("%Y-%m")


def build_parser() -> argparse.ArgumentParser:
    stamp = dt.datetime.now().strftime("%Y%m%d%H%M%S")
    parser = argparse.ArgumentParser(prog="costpuller", description="Pull, check and normalize per-account AWS spend")
    parser.add_argument("--aws", action="store_true", help="pull data from AWS Cost Explorer")
    parser.add_argument("--month", help="context month in format yyyy-mm (required for aws mode)")
    parser.add_argument("--costtype", default=CostMetric.BLENDED.value, choices=[m.value for m in CostMetric],
                        help="cost type to pull")
    parser.add_argument("--cookie", help="access cookie for the cost management system in curl serialized format")
    parser.add_argument("--accounts", default=DEFAULT_ACCOUNTS_FILE, help="accounts yaml file")
    parser.add_argument("--out", default=f"output-{stamp}.csv", help="output file for csv data")
    parser.add_argument("--report", default=f"report-{stamp}.txt", help="output file for data consistency report")
    parser.add_argument("--reconcile", action="store_true", help="pull both sources and cross-check account totals")
    parser.add_argument("--workers", type=int, default=int(os.getenv("COSTPULLER_WORKERS", "1")))
    parser.add_argument("--metrics-file", help="write run metrics in prometheus text format to this file")
    parser.add_argument("--writetags", action="store_true",
                        help="tag aws accounts with their group as costpuller_category and exit")
    parser.add_argument("--metadata", action="store_true",
                        help="print aws organization account metadata (name, status, tags) as json and exit")
    parser.add_argument("--debug", action="store_true", help="verbose logging; --writetags only logs")
    return parser


def _adapters(args):
    aws = cm = None
    if args.aws or args.reconcile:
        LOG.info("using credentials and account from the aws environment for aws pull")
        aws = aws_provider.AWSCostExplorerAdapter.from_env()
    if not args.aws or args.reconcile:
        if not args.cookie:
            raise ValueError("--cookie=<cookie> is needed to pull from cost management")
        cookies = parse_curl_cookie(args.cookie)
        cm = cm_provider.CostManagementAdapter(session_factory=lambda: cm_provider.new_session(cookies))
    if args.aws:
        return aws, cm
    return cm, aws


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO, format="[costpuller] %(message)s")
    LOG.info("costpuller starting..")
    try:
        if args.metadata:
            json.dump(aws_provider.fetch_account_metadata(), sys.stdout, indent=2, sort_keys=True)
            sys.stdout.write("\n")
            return 0
        groups: AccountGroups = load_account_groups(args.accounts)
        if args.writetags:
            aws_provider.write_category_tags(groups, dry_run=args.debug)
            return 0
        if (args.aws or args.reconcile) and not args.month:
            raise ValueError("aws mode requested, but no month given (use --month=yyyy-mm)")
        period = Period.from_month(args.month or previous_month())
        primary, secondary = _adapters(args)
        metrics = RunMetrics() if args.metrics_file else None
        outcomes = ingest_once(groups, primary, period, CostMetric(args.costtype), secondary,
                               workers=args.workers, metrics=metrics)
    except FatalError as e:
        LOG.error("fatal: %s", e)
        return 1
    except (OSError, ValueError) as e:
        LOG.error("error: %s", e)
        return 1

    LOG.info("using csv output file %s", args.out)
    with open(args.out, "w", newline="") as f:
        write_csv(f, build_rows(outcomes, groups))
    LOG.info("using report output file %s", args.report)
    with open(args.report, "w") as f:
        write_report(f, report_lines(outcomes))
    if metrics is not None:
        metrics.write(args.metrics_file)
    LOG.info("operation done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
