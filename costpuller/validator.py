import logging
from decimal import Decimal, ROUND_HALF_UP

from .errors import ConsistencyError, DeviationExceededError, TotalsMismatchError, UnitMismatchError
from .schemas import AccountConfig, ConsistencyVerdict, CostBreakdown

LOG = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_cents(value) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def check_units(breakdown: CostBreakdown):
    for item in breakdown.items:
        if item.unit != breakdown.reported_unit:
            raise UnitMismatchError(
                f"service {item.service_name} unit differs ({item.unit} vs {breakdown.reported_unit})"
            )


def check_totals(breakdown: CostBreakdown, total: Decimal):
    services = to_cents(total)
    reported = to_cents(breakdown.reported_total)
    if services != reported:
        raise TotalsMismatchError(
            f"total cost differs from reported total and total of services ({reported} vs {services})"
        )


def check_deviation(config: AccountConfig, total: Decimal):
    if not config.has_baseline:
        return
    diff = abs(config.standard_value - total)
    percent = diff / config.standard_value * 100
    if percent > config.deviation_percent:
        raise DeviationExceededError(
            f"deviation check failed: deviation is {diff:.2f} ({percent:.2f}%), "
            f"max deviation allowed is {config.deviation_percent}% "
            f"(value was {total:.2f}, standard value {config.standard_value:.2f})"
        )


class ConsistencyValidator:
    """Checks one breakdown's units, arithmetic and baseline deviation.

    Failures never raise out of ``validate``: they come back as a failed
    verdict that still carries the summed total, and the caller decides
    whether to keep going.
    """

    def validate(self, breakdown: CostBreakdown, config: AccountConfig) -> ConsistencyVerdict:
        total = breakdown.items_total()
        try:
            check_units(breakdown)
            check_totals(breakdown, total)
            check_deviation(config, total)
        except ConsistencyError as e:
            LOG.warning("consistency check failed for account %s: %s", breakdown.account_id, e)
            return ConsistencyVerdict(
                account_id=breakdown.account_id,
                total=total,
                passed=False,
                failure_kind=e.kind,
                message=str(e),
            )
        LOG.info("successful consistency check for data on account %s", breakdown.account_id)
        LOG.debug("total retrieved from %d services for account %s is %s",
                  len(breakdown.items), breakdown.account_id, total)
        return ConsistencyVerdict(account_id=breakdown.account_id, total=total, passed=True)
