from decimal import Decimal, InvalidOperation
from typing import Protocol

from ..categories import CategoryMap
from ..errors import ParseError
from ..schemas import CostBreakdown, CostMetric, Period


class CostSourceAdapter(Protocol):
    """A cost source that turns one account's spend for a period into a breakdown.

    Implementations raise FetchError on transport/authorization failures,
    ShapeError when the response topology is unexpected and ParseError when a
    number can't be decoded.
    """

    source: str
    category_map: CategoryMap

    def fetch(self, account_id: str, period: Period, metric: CostMetric) -> CostBreakdown:
        ...


def parse_amount(raw, what: str) -> Decimal:
    if isinstance(raw, float):
        raw = repr(raw)
    try:
        value = Decimal(raw)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ParseError(f"{what}: cannot decode amount {raw!r}") from e
    if not value.is_finite():
        raise ParseError(f"{what}: amount {raw!r} is not a finite number")
    return value
