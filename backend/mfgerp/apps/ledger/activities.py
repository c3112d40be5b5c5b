"""
Activity tables for the five batch ledgers.

Each ledger is described by a ``LedgerConfig``: the ORM model that stores its
records, the catalog kind its items resolve against, and one ``ActivitySpec``
per activity. An activity's ``upstream`` names the records (possibly in
another ledger) whose per-batch total seeds availability, and the activities
of this ledger that draw that availability down.

Chains across ledgers:

    material_receive_issue.Issue      -> material_consumption.Receive
    production_movement.Transfer      -> product_receive_issue.Receive
    production_movement.Issue[Rework] -> product_receive_issue.ReceiveProd[Rework]
    production_movement.Waste         -> product_receive_issue.Waste
    product_receive_issue.IssueProd[Rework] -> production_movement.Receive[Rework]
    product_receive_issue.Issue       -> daily_sales.Receive
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple, Type

from mfgerp.apps.catalog.models import ItemKindEnum

from . import models
from .errors import UnknownActivity, UnknownLedger


class Direction(str, enum.Enum):
    IN = "in"
    OUT = "out"


@dataclass(frozen=True)
class UpstreamSource:
    """Where an activity's selectable batches come from."""

    ledger: str
    activities: Tuple[str, ...]
    consumed_by: Tuple[str, ...] = ()
    expiry_ledger: Optional[str] = None
    expiry_activities: Tuple[str, ...] = ()

    @property
    def expiry_source_ledger(self) -> str:
        return self.expiry_ledger or self.ledger

    @property
    def expiry_source_activities(self) -> Tuple[str, ...]:
        return self.expiry_activities or self.activities


@dataclass(frozen=True)
class ActivitySpec:
    name: str
    direction: Direction
    requires_expiry: bool = False
    auto_batch: bool = False
    manual_batch: bool = False
    requires_price: bool = False
    upstream: Optional[UpstreamSource] = None

    @property
    def is_increasing(self) -> bool:
        return self.direction == Direction.IN


@dataclass(frozen=True)
class LedgerConfig:
    key: str
    label: str
    item_kind: ItemKindEnum
    model: Type[models.LedgerRecordMixin]
    activities: Tuple[ActivitySpec, ...]
    _by_name: Dict[str, ActivitySpec] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_name", {spec.name: spec for spec in self.activities})

    def activity(self, name: str) -> ActivitySpec:
        spec = self._by_name.get(name)
        if spec is None:
            raise UnknownActivity(self.key, name)
        return spec

    @property
    def increasing(self) -> FrozenSet[str]:
        return frozenset(spec.name for spec in self.activities if spec.direction == Direction.IN)

    @property
    def decreasing(self) -> FrozenSet[str]:
        return frozenset(spec.name for spec in self.activities if spec.direction == Direction.OUT)

    @property
    def has_price(self) -> bool:
        return hasattr(self.model, "price")


def _own(ledger: str, activities, consumed_by, **kwargs) -> UpstreamSource:
    return UpstreamSource(ledger=ledger, activities=tuple(activities), consumed_by=tuple(consumed_by), **kwargs)


# ---------------------------------------------------------------------------
# Ledger keys and activity names
# ---------------------------------------------------------------------------

MATERIAL_RECEIVE_ISSUE = "material_receive_issue"
MATERIAL_CONSUMPTION = "material_consumption"
PRODUCTION_MOVEMENT = "production_movement"
PRODUCT_RECEIVE_ISSUE = "product_receive_issue"
DAILY_SALES = "daily_sales"

RECEIVE_REWORK = "Receive [Rework]"
ISSUE_REWORK = "Issue [Rework]"
RECEIVE_CUSTOMER_REWORK = "ReceiveCustomer [Rework]"
RECEIVE_PROD_REWORK = "ReceiveProd [Rework]"
ISSUE_PROD_REWORK = "IssueProd [Rework]"
ISSUE_CUSTOMER_REWORK = "IssueCustomer [Rework]"

PRODUCT_ISSUE_FAMILY = ("Issue", "Sample", "Gift", "Promotion")
PRODUCTION_EXPIRY_SOURCES = ("Production", RECEIVE_REWORK)


def _material_receive_issue() -> LedgerConfig:
    return LedgerConfig(
        key=MATERIAL_RECEIVE_ISSUE,
        label="Material receive / issue",
        item_kind=ItemKindEnum.MATERIAL,
        model=models.MaterialReceiveIssueRecord,
        activities=(
            ActivitySpec("Receive", Direction.IN, requires_expiry=True, auto_batch=True),
            ActivitySpec("Issue", Direction.OUT),
        ),
    )


def _material_consumption() -> LedgerConfig:
    key = MATERIAL_CONSUMPTION
    return LedgerConfig(
        key=key,
        label="Material consumption",
        item_kind=ItemKindEnum.MATERIAL,
        model=models.MaterialConsumptionRecord,
        activities=(
            ActivitySpec(
                "Receive",
                Direction.IN,
                requires_expiry=True,
                upstream=UpstreamSource(
                    ledger=MATERIAL_RECEIVE_ISSUE,
                    activities=("Issue",),
                    consumed_by=("Receive",),
                    expiry_activities=("Receive",),
                ),
            ),
            ActivitySpec("Consume", Direction.OUT, upstream=_own(key, ["Receive"], ["Consume"])),
        ),
    )


def _production_movement() -> LedgerConfig:
    key = PRODUCTION_MOVEMENT
    return LedgerConfig(
        key=key,
        label="Production movement",
        item_kind=ItemKindEnum.PRODUCT,
        model=models.ProductionMovementRecord,
        activities=(
            ActivitySpec("Production", Direction.IN, requires_expiry=True, auto_batch=True),
            ActivitySpec(
                RECEIVE_REWORK,
                Direction.IN,
                requires_expiry=True,
                manual_batch=True,
                upstream=UpstreamSource(
                    ledger=PRODUCT_RECEIVE_ISSUE,
                    activities=(ISSUE_PROD_REWORK,),
                    consumed_by=(RECEIVE_REWORK,),
                ),
            ),
            ActivitySpec(
                "Transfer",
                Direction.OUT,
                requires_expiry=True,
                upstream=_own(key, ["Production", RECEIVE_REWORK], ["Transfer", ISSUE_REWORK, "Waste"]),
            ),
            ActivitySpec(ISSUE_REWORK, Direction.OUT, upstream=_own(key, [RECEIVE_REWORK], [ISSUE_REWORK])),
            ActivitySpec("Waste", Direction.OUT, manual_batch=True),
        ),
    )


def _product_receive_issue() -> LedgerConfig:
    key = PRODUCT_RECEIVE_ISSUE
    stock_sources = ["Receive", RECEIVE_PROD_REWORK]
    issue_upstream = _own(key, stock_sources, PRODUCT_ISSUE_FAMILY)
    return LedgerConfig(
        key=key,
        label="Product receive / issue",
        item_kind=ItemKindEnum.PRODUCT,
        model=models.ProductReceiveIssueRecord,
        activities=(
            ActivitySpec(
                "Receive",
                Direction.IN,
                requires_expiry=True,
                upstream=UpstreamSource(
                    ledger=PRODUCTION_MOVEMENT,
                    activities=("Transfer",),
                    consumed_by=("Receive",),
                    expiry_activities=PRODUCTION_EXPIRY_SOURCES,
                ),
            ),
            ActivitySpec(RECEIVE_CUSTOMER_REWORK, Direction.IN, manual_batch=True),
            ActivitySpec(
                RECEIVE_PROD_REWORK,
                Direction.IN,
                requires_expiry=True,
                upstream=UpstreamSource(
                    ledger=PRODUCTION_MOVEMENT,
                    activities=(ISSUE_REWORK,),
                    consumed_by=(RECEIVE_PROD_REWORK,),
                    expiry_activities=PRODUCTION_EXPIRY_SOURCES,
                ),
            ),
            ActivitySpec("Issue", Direction.OUT, requires_expiry=True, upstream=issue_upstream),
            ActivitySpec("Sample", Direction.OUT, upstream=issue_upstream),
            ActivitySpec("Gift", Direction.OUT, upstream=issue_upstream),
            ActivitySpec("Promotion", Direction.OUT, upstream=issue_upstream),
            ActivitySpec(
                ISSUE_PROD_REWORK,
                Direction.OUT,
                upstream=_own(key, [RECEIVE_CUSTOMER_REWORK], [ISSUE_PROD_REWORK]),
            ),
            ActivitySpec(
                ISSUE_CUSTOMER_REWORK,
                Direction.OUT,
                requires_expiry=True,
                upstream=_own(key, [RECEIVE_CUSTOMER_REWORK], [ISSUE_CUSTOMER_REWORK]),
            ),
            ActivitySpec(
                "Waste",
                Direction.OUT,
                requires_expiry=True,
                upstream=UpstreamSource(
                    ledger=PRODUCTION_MOVEMENT,
                    activities=("Waste",),
                    consumed_by=("Waste",),
                    expiry_activities=PRODUCTION_EXPIRY_SOURCES,
                ),
            ),
            ActivitySpec("Return", Direction.OUT, manual_batch=True),
        ),
    )


def _daily_sales() -> LedgerConfig:
    key = DAILY_SALES
    return LedgerConfig(
        key=key,
        label="Daily sales",
        item_kind=ItemKindEnum.PRODUCT,
        model=models.DailySalesRecord,
        activities=(
            ActivitySpec(
                "Receive",
                Direction.IN,
                requires_expiry=True,
                upstream=UpstreamSource(
                    ledger=PRODUCT_RECEIVE_ISSUE,
                    activities=("Issue",),
                    consumed_by=("Receive",),
                    expiry_activities=("Receive", RECEIVE_PROD_REWORK),
                ),
            ),
            ActivitySpec(
                "Return from Customer",
                Direction.IN,
                upstream=_own(key, ["Sales"], ["Return from Customer"]),
            ),
            ActivitySpec(
                "Sales",
                Direction.OUT,
                requires_price=True,
                upstream=_own(key, ["Receive"], ["Sales"]),
            ),
            ActivitySpec("Return to customer", Direction.OUT, upstream=_own(key, ["Receive"], [])),
            ActivitySpec("Loss", Direction.OUT, upstream=_own(key, ["Receive"], ["Loss"])),
        ),
    )


LEDGERS: Dict[str, LedgerConfig] = {
    config.key: config
    for config in (
        _material_receive_issue(),
        _material_consumption(),
        _production_movement(),
        _product_receive_issue(),
        _daily_sales(),
    )
}


def get_ledger(key: str) -> LedgerConfig:
    config = LEDGERS.get(key)
    if config is None:
        raise UnknownLedger(key)
    return config
