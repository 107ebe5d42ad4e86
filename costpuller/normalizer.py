import logging
from decimal import Decimal
from typing import Dict

from .categories import CATEGORY_COLUMNS, Category, CategoryMap
from .schemas import CostBreakdown, ReportRow

LOG = logging.getLogger(__name__)


def format_amount(value: Decimal) -> str:
    # fixed point, six places, never exponent notation
    return f"{value:.6f}"


class CategoryNormalizer:
    """Folds a breakdown into the fixed report row using one source's category map.

    Every category is an additive sum over the items classified into it, so
    the numeric columns always add up to the breakdown's item total. Columns
    with no matching item keep their ``"0"`` default, except ``other`` which is
    always written.
    """

    def __init__(self, category_map: CategoryMap):
        self.category_map = category_map

    def bucket(self, breakdown: CostBreakdown) -> Dict[Category, Decimal]:
        sums: Dict[Category, Decimal] = {}
        for item in breakdown.items:
            category = self.category_map.classify(item.service_name)
            if category is Category.OTHER:
                LOG.debug("service %r not in %s map, counted as other", item.service_name, self.category_map.source)
            sums[category] = sums.get(category, Decimal("0")) + item.amount
        return sums

    def normalize(self, breakdown: CostBreakdown, period_label: str, account_id: str) -> ReportRow:
        sums = self.bucket(breakdown)
        sums.setdefault(Category.OTHER, Decimal("0"))
        amounts = {CATEGORY_COLUMNS[c]: format_amount(v) for c, v in sums.items()}
        return ReportRow(date=period_label, cluster_id=account_id, account_id=account_id, **amounts)
