import datetime as dt
from decimal import Decimal

import pytest

from costpuller.schemas import AccountConfig, CostBreakdown, CostLineItem, Period


def make_breakdown(amounts, total=None, unit="USD", units=None, account_id="123456789012", label="2024-03"):
    units = units or {}
    items = tuple(
        CostLineItem(service_name=name, amount=Decimal(str(value)), unit=units.get(name, unit))
        for name, value in amounts.items()
    )
    if total is None:
        total = sum((i.amount for i in items), Decimal("0"))
    return CostBreakdown(
        account_id=account_id,
        period_start=dt.date(2024, 3, 1),
        period_end=dt.date(2024, 4, 1),
        period_label=label,
        items=items,
        reported_total=Decimal(str(total)),
        reported_unit=unit,
    )


class FakeCostExplorer:
    """Stands in for a boto3 ``ce`` client, answering from canned pages."""

    def __init__(self, services, totals, metric="BlendedCost", error=None):
        self.services = {k: dict(v) for k, v in services.items()}
        self.totals = totals
        self.metric = metric
        self.error = error
        self.calls = []

    def get_cost_and_usage(self, **params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        account = params["Filter"]["Dimensions"]["Values"][0]
        period = {"Start": params["TimePeriod"]["Start"], "End": params["TimePeriod"]["End"]}
        if "GroupBy" not in params:
            amount, unit = self.totals[account]
            return {"ResultsByTime": [{"TimePeriod": period, "Total": {self.metric: {"Amount": amount, "Unit": unit}},
                                       "Groups": []}]}
        groups = [{"Keys": [name], "Metrics": {self.metric: {"Amount": amount, "Unit": "USD"}}}
                  for name, amount in self.services[account].items()]
        return {"ResultsByTime": [{"TimePeriod": period, "Total": {}, "Groups": groups}]}


@pytest.fixture
def march():
    return Period.from_month("2024-03")


@pytest.fixture
def account():
    return AccountConfig(account_id="123456789012", category="eng")


@pytest.fixture
def mixed_breakdown():
    return make_breakdown({
        "Amazon Elastic Compute Cloud - Compute": "50.00",
        "EC2 - Other": "10.00",
        "Amazon Simple Storage Service": "20.00",
        "AWS Data Transfer": "5.00",
        "Tax": "2.00",
    }, total="87.00")
