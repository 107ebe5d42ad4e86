import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import FailureKind, ParseError, error_for_kind

ROW_SCHEMA_VERSION = 1

PENDING = "PENDING"
INFRA = "AWS"


class CostMetric(str, Enum):
    AMORTIZED = "AmortizedCost"
    BLENDED = "BlendedCost"
    NET_AMORTIZED = "NetAmortizedCost"
    NET_UNBLENDED = "NetUnblendedCost"
    NORMALIZED_USAGE = "NormalizedUsageAmount"
    UNBLENDED = "UnblendedCost"
    USAGE_QUANTITY = "UsageQuantity"


class Period(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: dt.date
    end: dt.date  # exclusive
    label: str

    @classmethod
    def from_month(cls, month: str) -> "Period":
        """Build the calendar month period for a ``yyyy-mm`` string."""
        try:
            start = dt.datetime.strptime(month, "%Y-%m").date()
        except (TypeError, ValueError) as e:
            raise ParseError(f"month {month!r} is not in format yyyy-mm") from e
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return cls(start=start, end=end, label=start.strftime("%Y-%m"))

    @property
    def last_day(self) -> dt.date:
        return self.end - dt.timedelta(days=1)


class CostLineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_name: str
    amount: Decimal
    unit: str


class CostBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str
    period_start: dt.date
    period_end: dt.date
    period_label: str
    items: Tuple[CostLineItem, ...] = ()
    reported_total: Decimal
    reported_unit: str

    @field_validator("items")
    @classmethod
    def unique_service_names(cls, v):
        seen = set()
        for item in v:
            if item.service_name in seen:
                raise ValueError(f"duplicate service name {item.service_name!r}")
            seen.add(item.service_name)
        return v

    def items_total(self) -> Decimal:
        return sum((i.amount for i in self.items), Decimal("0"))


class AccountConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    account_id: str = Field(alias="accountid")
    category: str = ""
    standard_value: Decimal = Field(default=Decimal("0"), alias="standardvalue")
    deviation_percent: int = Field(default=0, alias="deviationpercent")

    @field_validator("account_id", mode="before")
    @classmethod
    def coerce_account_id(cls, v):
        # yaml loads bare 12-digit ids as ints
        if isinstance(v, int):
            return f"{v:012d}"
        return v

    @property
    def has_baseline(self) -> bool:
        return self.standard_value > 0


class ConsistencyVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str
    total: Decimal
    passed: bool
    failure_kind: FailureKind = FailureKind.NONE
    message: str = ""

    def report_line(self) -> Optional[str]:
        if self.passed:
            return None
        return f"{self.account_id}: {self.message}"

    def raise_for_failure(self):
        """Re-raise the typed consistency error behind a failed verdict."""
        if not self.passed:
            raise error_for_kind(self.failure_kind)(self.message)


class ReportRow(BaseModel):
    """Fixed 18-column output row. Column order is the field order."""
    model_config = ConfigDict(frozen=True)

    date: str
    cluster_id: str
    account_id: str
    purchase_order: str = PENDING
    cluster_type: str = PENDING
    usage_type: str = PENDING
    product: str = PENDING
    infra: str = INFRA
    number_users: str = PENDING
    data_transfer: str = "0"
    compute: str = "0"
    storage: str = "0"
    key_management: str = "0"
    registrar: str = PENDING
    dns: str = "0"
    other: str = "0"
    tax: str = "0"
    refund: str = "0"

    def as_list(self) -> List[str]:
        return [getattr(self, name) for name in REPORT_COLUMNS]


REPORT_COLUMNS = tuple(ReportRow.model_fields)

NUMERIC_COLUMNS = ("data_transfer", "compute", "storage", "key_management", "dns", "other", "tax", "refund")
