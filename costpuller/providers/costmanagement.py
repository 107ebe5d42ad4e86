import os
import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import requests

from ..categories import COST_MANAGEMENT_CATEGORIES
from ..errors import FetchError, ParseError, ShapeError, UnsupportedMetricError
from ..schemas import CostBreakdown, CostLineItem, CostMetric, Period
from .base import parse_amount

LOG = logging.getLogger(__name__)

DEFAULT_URL = "https://cloud.redhat.com/api/cost-management/v1/reports/aws/costs/"

COST_TYPES = {
    CostMetric.BLENDED: "blended_cost",
    CostMetric.UNBLENDED: "unblended_cost",
    CostMetric.AMORTIZED: "savingsplan_effective_cost",
}

HEADERS = {
    "pragma": "no-cache",
    "cache-control": "no-cache",
    "accept": "application/json, text/plain, */*",
    "referer": "https://cloud.redhat.com/beta/cost-management/",
}


def new_session(cookies: Optional[Mapping[str, str]] = None) -> requests.Session:
    session = requests.Session()
    session.headers.update(HEADERS)
    for name, value in (cookies or {}).items():
        session.cookies.set(name, value)
    return session


def _mapping(node, what: str) -> Mapping[str, Any]:
    if not isinstance(node, Mapping):
        raise ShapeError(f"{what} is not an object ({type(node).__name__})")
    return node


def _cost_value(cost: Mapping[str, Any], what: str) -> Tuple[Any, str]:
    # current layout nests the figure under cost.total, older responses carry it directly
    cost = _mapping(cost, f"{what} cost section")
    node = _mapping(cost["total"], f"{what} cost total") if "total" in cost else cost
    if "value" not in node:
        raise ShapeError(f"{what}: cost section has no value")
    units = node.get("units", "")
    if not isinstance(units, str):
        raise ShapeError(f"{what}: cost units {units!r} is not a string")
    return node["value"], units


class CostManagementAdapter:
    """Cost-management REST source, one monthly bucket grouped by service.

    Pass either a ready ``session`` or a ``session_factory``; with a factory
    every thread gets a session of its own.
    """

    source = "costmanagement"
    category_map = COST_MANAGEMENT_CATEGORIES

    def __init__(self, session: Optional[requests.Session] = None, url: Optional[str] = None,
                 timeout: Optional[float] = None,
                 session_factory: Optional[Callable[[], requests.Session]] = None):
        if session is None and session_factory is None:
            raise ValueError("either session or session_factory is needed")
        self._session = session
        self._session_factory = session_factory
        self._local = threading.local()
        self.url = url or os.getenv("COST_MANAGEMENT_URL", DEFAULT_URL)
        self.timeout = timeout

    @property
    def session(self) -> requests.Session:
        if self._session_factory is None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = self._session_factory()
        return session

    def _params(self, account_id: str, period: Period, metric: CostMetric) -> Dict[str, str]:
        if metric not in COST_TYPES:
            raise UnsupportedMetricError(
                f"cost type {metric.value} is not available from cost management "
                f"(one of {', '.join(m.value for m in COST_TYPES)})"
            )
        return {
            "filter[resolution]": "monthly",
            "filter[account]": account_id,
            "group_by[service]": "*",
            "start_date": period.start.isoformat(),
            "end_date": period.last_day.isoformat(),
            "cost_type": COST_TYPES[metric],
        }

    def pull(self, account_id: str, period: Period, metric: CostMetric) -> Dict[str, Any]:
        params = self._params(account_id, period, metric)
        try:
            resp = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"error pulling data from service: {e}") from e
        if resp.status_code != 200:
            raise FetchError(
                f"error fetching data from service, returned status {resp.status_code}, "
                f"url was {resp.url}\nBody: {resp.text}"
            )
        try:
            payload = resp.json()
        except ValueError as e:
            raise ParseError(f"error parsing json from service: {e}") from e
        LOG.debug("received cost management report for account %s: %s", account_id, payload)
        return payload

    def parse(self, account_id: str, period: Period, payload: Mapping[str, Any]) -> CostBreakdown:
        payload = _mapping(payload, "response")
        meta = _mapping(payload.get("meta") or {}, "meta section")
        data = payload.get("data") or []
        if not isinstance(data, list):
            raise ShapeError(f"response data is not a list ({type(data).__name__})")
        if len(data) != 1:
            raise ShapeError(f"response data has length of {len(data)} instead of 1")
        filtered = _mapping(meta.get("filter") or {}, "meta filter").get("account") or []
        if filtered and account_id not in filtered:
            raise ShapeError(f"response is filtered for account {filtered} instead of {account_id}")

        bucket = _mapping(data[0], "data entry")
        bucket_date = bucket.get("date", period.label)
        total = _mapping(meta.get("total") or {}, "meta total")
        total_value, total_unit = _cost_value(total.get("cost") or {}, "meta total")

        services = bucket.get("services") or []
        if not isinstance(services, list):
            raise ShapeError("services section is not a list")
        items = []
        seen = set()
        for service in services:
            service = _mapping(service, "service entry")
            name = service.get("service")
            if not isinstance(name, str):
                raise ShapeError(f"service entry has no service name ({name!r})")
            values = service.get("values") or []
            if not isinstance(values, list):
                raise ShapeError(f"service {name} values section is not a list")
            if len(values) != 1:
                raise ShapeError(f"service {name} has more than exactly one values section (length is {len(values)})")
            if name in seen:
                raise ShapeError(f"service {name} reported twice")
            seen.add(name)
            value = _mapping(values[0], f"service {name} value")
            if value.get("date", bucket_date) != bucket_date:
                raise ShapeError(f"service {name} date stamp differs ({value.get('date')} vs {bucket_date})")
            amount, unit = _cost_value(value.get("cost") or {}, f"service {name}")
            items.append(CostLineItem(service_name=name, amount=parse_amount(amount, f"service {name}"), unit=unit))

        return CostBreakdown(
            account_id=account_id,
            period_start=period.start,
            period_end=period.end,
            period_label=bucket_date,
            items=tuple(items),
            reported_total=parse_amount(total_value, "meta total"),
            reported_unit=total_unit,
        )

    def fetch(self, account_id: str, period: Period, metric: CostMetric = CostMetric.BLENDED) -> CostBreakdown:
        metric = CostMetric(metric)
        LOG.info("pulling cost management %s for account %s", metric.value, account_id)
        return self.parse(account_id, period, self.pull(account_id, period, metric))
