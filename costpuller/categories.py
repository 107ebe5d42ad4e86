"""
Service-name vocabularies of the two cost sources and the report category each
name lands in.

The provider-billing API (Cost Explorer) and the cost-management API name the
same AWS services differently, so each source keeps its own literal table. Names
missing from a table are bucketed into ``Category.OTHER``.
"""
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping


class Category(str, Enum):
    DATA_TRANSFER = "dataTransfer"
    COMPUTE = "compute"
    STORAGE = "storage"
    KEY_MANAGEMENT = "keyManagement"
    DNS = "dns"
    TAX = "tax"
    OTHER = "other"


# report column fed by each category
CATEGORY_COLUMNS = {
    Category.DATA_TRANSFER: "data_transfer",
    Category.COMPUTE: "compute",
    Category.STORAGE: "storage",
    Category.KEY_MANAGEMENT: "key_management",
    Category.DNS: "dns",
    Category.TAX: "tax",
    Category.OTHER: "other",
}


class CategoryMap:
    """Static vendor service name -> Category table for one cost source."""

    def __init__(self, source: str, table: Dict[str, Category]):
        self.source = source
        self._table = MappingProxyType(dict(table))

    @property
    def table(self) -> Mapping[str, Category]:
        return self._table

    def classify(self, service_name: str) -> Category:
        return self._table.get(service_name, Category.OTHER)

    def known_names(self):
        return frozenset(self._table)

    def validate(self, expected_names: Iterable[str]):
        """Check the table covers exactly ``expected_names`` with real categories."""
        expected = frozenset(expected_names)
        missing = expected - self.known_names()
        extra = self.known_names() - expected
        if missing or extra:
            raise ValueError(
                f"{self.source} category map out of sync: missing={sorted(missing)} extra={sorted(extra)}"
            )
        for name, category in self._table.items():
            if not isinstance(category, Category) or category is Category.OTHER:
                raise ValueError(f"{self.source} category map: {name!r} has no concrete category")

    def __repr__(self):
        return f"CategoryMap({self.source!r}, {len(self._table)} names)"


AWS_BILLING_SERVICES = (
    "Amazon Elastic Compute Cloud - Compute",
    "EC2 - Other",
    "Amazon Simple Storage Service",
    "AWS Key Management Service",
    "AWS Secrets Manager",
    "Amazon Route 53",
    "AWS Data Transfer",
    "Tax",
)

AWS_BILLING_CATEGORIES = CategoryMap("aws", {
    "Amazon Elastic Compute Cloud - Compute": Category.COMPUTE,
    "EC2 - Other": Category.COMPUTE,
    "Amazon Simple Storage Service": Category.STORAGE,
    "AWS Key Management Service": Category.KEY_MANAGEMENT,
    "AWS Secrets Manager": Category.KEY_MANAGEMENT,
    "Amazon Route 53": Category.DNS,
    "AWS Data Transfer": Category.DATA_TRANSFER,
    "Tax": Category.TAX,
})

COST_MANAGEMENT_SERVICES = (
    "AmazonEC2",
    "AmazonS3",
    "awskms",
    "AmazonRoute53",
    "AWSDataTransfer",
)

COST_MANAGEMENT_CATEGORIES = CategoryMap("costmanagement", {
    "AmazonEC2": Category.COMPUTE,
    "AmazonS3": Category.STORAGE,
    "awskms": Category.KEY_MANAGEMENT,
    "AmazonRoute53": Category.DNS,
    "AWSDataTransfer": Category.DATA_TRANSFER,
})

AWS_BILLING_CATEGORIES.validate(AWS_BILLING_SERVICES)
COST_MANAGEMENT_CATEGORIES.validate(COST_MANAGEMENT_SERVICES)
