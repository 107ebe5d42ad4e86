import os
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..categories import AWS_BILLING_CATEGORIES
from ..errors import FetchError, ShapeError
from ..schemas import AccountConfig, CostBreakdown, CostLineItem, CostMetric, Period
from .base import parse_amount

LOG = logging.getLogger(__name__)

CATEGORY_TAG_KEY = "costpuller_category"
METADATA_DESCRIPTION = "description"
METADATA_STATUS = "status"


def _ce():
    region = os.getenv("AWS_REGION", "us-east-1")
    return boto3.client("ce", region_name=region)


def _organizations():
    return boto3.client("organizations")


def _date_range(period: Period):
    return period.start.isoformat(), period.end.isoformat()


class AWSCostExplorerAdapter:
    """Provider-billing source backed by the Cost Explorer GetCostAndUsage API.

    The service breakdown and the account total come from two separate queries
    that share the time period, granularity, metric and account filter, so the
    total can later be checked against the sum of the services.
    """

    source = "aws"
    category_map = AWS_BILLING_CATEGORIES

    def __init__(self, client=None):
        self.client = client

    @classmethod
    def from_env(cls):
        return cls(_ce())

    def _query(self, account_id: str, period: Period, metric: CostMetric, group_by: Optional[List[Dict]] = None):
        start, end = _date_range(period)
        params: Dict[str, Any] = {
            "TimePeriod": {"Start": start, "End": end},
            "Granularity": "MONTHLY",
            "Metrics": [metric.value],
            "Filter": {"Dimensions": {"Key": "LINKED_ACCOUNT", "Values": [account_id]}},
        }
        if group_by:
            params["GroupBy"] = group_by
        pages = []
        token: Optional[str] = None
        while True:
            if token:
                params["NextPageToken"] = token
            try:
                resp = self.client.get_cost_and_usage(**params)
            except (ClientError, BotoCoreError) as e:
                raise FetchError(f"error retrieving aws cost report for account {account_id}: {e}") from e
            LOG.debug("received cost explorer page for account %s: %s", account_id, resp)
            pages.append(resp)
            token = resp.get("NextPageToken")
            if not token:
                break
        return pages

    @staticmethod
    def _merge_buckets(pages: Sequence[Mapping]) -> List[Dict]:
        buckets: Dict[str, Dict] = {}
        for page in pages:
            for by_time in page.get("ResultsByTime", []):
                start = by_time.get("TimePeriod", {}).get("Start")
                bucket = buckets.setdefault(start, {"TimePeriod": by_time.get("TimePeriod"),
                                                    "Total": by_time.get("Total", {}), "Groups": []})
                bucket["Groups"].extend(by_time.get("Groups", []))
        return list(buckets.values())

    def fetch(self, account_id: str, period: Period, metric: CostMetric = CostMetric.BLENDED) -> CostBreakdown:
        metric = CostMetric(metric)
        LOG.info("pulling aws %s for account %s, date range %s to %s",
                 metric.value, account_id, period.start, period.end)
        service_pages = self._query(account_id, period, metric, [{"Type": "DIMENSION", "Key": "SERVICE"}])
        total_pages = self._query(account_id, period, metric)

        totals = self._merge_buckets(total_pages)
        if len(totals) != 1:
            raise ShapeError(f"account {account_id} total report has {len(totals)} results by time instead of 1")
        total_metric = totals[0]["Total"].get(metric.value)
        if not total_metric:
            raise ShapeError(f"account {account_id} total report has no {metric.value} value")
        reported_total = parse_amount(total_metric.get("Amount"), f"account {account_id} total")
        reported_unit = total_metric.get("Unit", "")

        buckets = self._merge_buckets(service_pages)
        if len(buckets) != 1:
            raise ShapeError(f"account {account_id} does not have exactly one service results by time (has {len(buckets)})")
        items = []
        seen = set()
        for group in buckets[0]["Groups"]:
            if not isinstance(group, Mapping):
                raise ShapeError(f"account {account_id} service group is not an object ({group!r})")
            keys = group.get("Keys", [])
            if not isinstance(keys, list) or len(keys) != 1 or not isinstance(keys[0], str):
                raise ShapeError(f"account {account_id} service group does not have exactly one key ({keys})")
            service = keys[0]
            if service in seen:
                raise ShapeError(f"account {account_id} service {service!r} reported twice")
            seen.add(service)
            metrics = group.get("Metrics", {})
            if not isinstance(metrics, Mapping):
                raise ShapeError(f"account {account_id} service {service!r} metrics section is not an object")
            value = metrics.get(metric.value)
            if value is None:
                raise ShapeError(f"account {account_id} service {service!r} has no {metric.value} value")
            if not isinstance(value, Mapping):
                raise ShapeError(f"account {account_id} service {service!r} {metric.value} value is not an object")
            unit = value.get("Unit", "")
            if not isinstance(unit, str):
                raise ShapeError(f"account {account_id} service {service!r} unit {unit!r} is not a string")
            items.append(CostLineItem(
                service_name=service,
                amount=parse_amount(value.get("Amount"), f"account {account_id} service {service}"),
                unit=unit,
            ))
        return CostBreakdown(
            account_id=account_id,
            period_start=period.start,
            period_end=period.end,
            period_label=period.label,
            items=tuple(items),
            reported_total=reported_total,
            reported_unit=reported_unit,
        )


def fetch_account_metadata(org_client=None) -> Dict[str, Dict[str, str]]:
    """Returns ``{account_id: {description, status, <tag key>: <tag value>}}`` for the organization."""
    org = org_client or _organizations()
    accounts: Dict[str, Dict[str, str]] = {}
    try:
        for page in org.get_paginator("list_accounts").paginate(PaginationConfig={"PageSize": 10}):
            for acct in page.get("Accounts", []):
                accounts[acct["Id"]] = {
                    METADATA_DESCRIPTION: acct.get("Name", ""),
                    METADATA_STATUS: acct.get("Status", ""),
                }
        for account_id, meta in accounts.items():
            for page in org.get_paginator("list_tags_for_resource").paginate(ResourceId=account_id):
                for tag in page.get("Tags", []):
                    meta[tag["Key"]] = tag["Value"]
    except (ClientError, BotoCoreError) as e:
        raise FetchError(f"error getting aws account metadata: {e}") from e
    return accounts


def write_category_tags(groups: Mapping[str, Sequence[AccountConfig]], org_client=None, dry_run: bool = False) -> int:
    """Tags each configured account with its group name. Returns the number of tagged accounts."""
    org = None if dry_run else (org_client or _organizations())
    n = 0
    for category, accounts in groups.items():
        for account in accounts:
            if dry_run:
                LOG.info("not setting tag %s == %s for account %s (dry run)", CATEGORY_TAG_KEY, category, account.account_id)
                continue
            LOG.info("setting tag %s == %s for account %s", CATEGORY_TAG_KEY, category, account.account_id)
            try:
                org.tag_resource(ResourceId=account.account_id, Tags=[{"Key": CATEGORY_TAG_KEY, "Value": category}])
            except (ClientError, BotoCoreError) as e:
                raise FetchError(f"error tagging account {account.account_id}: {e}") from e
            n += 1
    return n
