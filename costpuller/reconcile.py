import logging
from decimal import Decimal

from .errors import CrossSourceMismatchError
from .validator import to_cents

LOG = logging.getLogger(__name__)


class CrossSourceReconciler:
    """Cross-checks two independently pulled grand totals at cent precision."""

    def reconcile(self, total_a: Decimal, total_b: Decimal) -> bool:
        return to_cents(total_a) == to_cents(total_b)

    def check(self, account_id: str, total_a: Decimal, total_b: Decimal, source_a="aws", source_b="costmanagement"):
        if not self.reconcile(total_a, total_b):
            raise CrossSourceMismatchError(
                f"cross-source total mismatch ({source_a} {to_cents(total_a)} vs {source_b} {to_cents(total_b)})"
            )
        LOG.info("account %s totals agree across %s and %s (%s)", account_id, source_a, source_b, to_cents(total_a))
