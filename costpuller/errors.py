from enum import Enum
from typing import Type


class FailureKind(str, Enum):
    NONE = "none"
    UNIT_MISMATCH = "unit_mismatch"
    TOTALS_MISMATCH = "totals_mismatch"
    DEVIATION_EXCEEDED = "deviation_exceeded"


class CostPullerError(Exception):
    pass


class FatalError(CostPullerError):
    """Data can't be trusted; no row can be produced and the run stops."""


class FetchError(FatalError):
    pass


class ShapeError(FatalError):
    pass


class ParseError(FatalError):
    pass


class UnsupportedMetricError(FatalError, ValueError):
    pass


class ConsistencyError(CostPullerError):
    """Business-rule failure. The row is still usable, only flagged."""
    kind = FailureKind.NONE


class UnitMismatchError(ConsistencyError):
    kind = FailureKind.UNIT_MISMATCH


class TotalsMismatchError(ConsistencyError):
    kind = FailureKind.TOTALS_MISMATCH


class DeviationExceededError(ConsistencyError):
    kind = FailureKind.DEVIATION_EXCEEDED


class CrossSourceMismatchError(ConsistencyError):
    pass


VERDICT_ERRORS = (UnitMismatchError, TotalsMismatchError, DeviationExceededError)


def error_for_kind(kind: FailureKind) -> Type[ConsistencyError]:
    for cls in VERDICT_ERRORS:
        if cls.kind is kind:
            return cls
    raise KeyError(kind)
