# promo/services/allocation.py
"""
Budget allocation across a set of offers.

Two modes:

* ``divide_evenly=False`` copies the given values onto every target offer.
* ``divide_evenly=True`` splits each total so that the parts add back up to
  exactly the total. Every offer gets ``floor(total / n)`` units and the
  first ``total % n`` offers (in target order) get one extra unit. The unit
  is one click for click caps and one cent for dollar amounts (or the finest
  decimal place the total uses, when that is finer than a cent).

Validation failures are raised as ``AllocationError``; balance overflows are
collected and raised together as ``BudgetOverflowError``.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from promo.core.logging import get_structlog_logger
from promo.services.records import AccountBalances

logger = get_structlog_logger(__name__)

_CENT_EXPONENT = -2
_BUDGET_FIELDS = ("max_clicks", "click_budget_dollars", "text_budget", "rips_budget")
# Allocation field -> offer column written by the store.
OFFER_COLUMNS = {
    "max_clicks": "max_clicks_allowed",
    "click_budget_dollars": "click_budget_dollars",
    "text_budget": "text_budget_dollars",
    "rips_budget": "rips_budget_dollars",
}


class AllocationScope(str, Enum):
    ALL = "all"
    FILTERED = "filtered"


class OverflowKind(str, Enum):
    TEXT_BUDGET_EXCEEDED = "text_budget_exceeded"
    RIPS_BUDGET_EXCEEDED = "rips_budget_exceeded"
    BANK_BALANCE_EXCEEDED = "bank_balance_exceeded"


class AllocationError(Exception):
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


@dataclass(frozen=True)
class BudgetInput:
    """A budget request. None leaves that field untouched on the offers."""
    max_clicks: Optional[int] = None
    click_budget_dollars: Optional[Decimal] = None
    text_budget: Optional[Decimal] = None
    rips_budget: Optional[Decimal] = None


@dataclass(frozen=True)
class OfferBudgetAssignment:
    offer_id: str
    max_clicks: Optional[int] = None
    click_budget_dollars: Optional[Decimal] = None
    text_budget: Optional[Decimal] = None
    rips_budget: Optional[Decimal] = None


@dataclass(frozen=True)
class Allocation:
    scope: AllocationScope
    divide_evenly: bool
    requested: BudgetInput
    assignments: Tuple[OfferBudgetAssignment, ...]

    @property
    def target_count(self) -> int:
        return len(self.assignments)

    def total(self, field_name: str) -> Decimal:
        return sum(
            (Decimal(getattr(a, field_name) or 0) for a in self.assignments),
            Decimal("0"),
        )


@dataclass(frozen=True)
class ScopeOverallocation:
    field: str
    requested: Decimal
    limit: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "requested": str(self.requested), "limit": str(self.limit)}


@dataclass(frozen=True)
class ScopeRemainder:
    max_clicks: int
    click_budget_dollars: Decimal


@dataclass(frozen=True)
class BudgetOverflow:
    kind: OverflowKind
    needed: Decimal
    available: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.needed - self.available

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "needed": str(self.needed),
            "available": str(self.available),
        }


class BudgetOverflowError(AllocationError):
    """One or more merchant accounts cannot cover the allocation."""

    def __init__(self, overflows: Sequence[BudgetOverflow]):
        self.overflows = list(overflows)
        super().__init__(
            code="budget_overflow",
            message=", ".join(
                f"{o.kind.value}: {o.needed} needed, {o.available} available" for o in self.overflows
            ),
            details={"overflows": [o.to_dict() for o in self.overflows]},
        )

    def overflow(self, kind: OverflowKind) -> Optional[BudgetOverflow]:
        return next((o for o in self.overflows if o.kind == kind), None)


def split_evenly(total: int, count: int) -> List[int]:
    if count <= 0:
        raise AllocationError(
            code="no_targets",
            message="Cannot divide a budget across zero offers",
            details={"target_count": count},
        )
    base, remainder = divmod(total, count)
    return [base + 1 if i < remainder else base for i in range(count)]


def split_money_evenly(total: Decimal, count: int) -> List[Decimal]:
    exponent = total.as_tuple().exponent
    if not isinstance(exponent, int):
        raise AllocationError(code="invalid_amount", message=f"Invalid amount: {total}")
    unit = Decimal(1).scaleb(min(exponent, _CENT_EXPONENT))
    units = int(total / unit)
    return [Decimal(part) * unit for part in split_evenly(units, count)]


def _check_budget(budget: BudgetInput) -> None:
    negatives = [name for name in _BUDGET_FIELDS if (getattr(budget, name) or 0) < 0]
    if negatives:
        raise AllocationError(
            code="negative_budget",
            message="Budget values must not be negative",
            details={"fields": negatives},
        )


def allocate_budget(
    offer_ids: Sequence[str],
    budget: BudgetInput,
    divide_evenly: bool,
    scope: AllocationScope = AllocationScope.ALL,
) -> Allocation:
    targets = list(offer_ids)
    if not targets:
        raise AllocationError(
            code="no_targets",
            message="No offers selected for this allocation",
            details={"scope": scope.value},
        )
    if len(set(targets)) != len(targets):
        raise AllocationError(
            code="duplicate_targets",
            message="An offer appears more than once in the target set",
            details={"scope": scope.value},
        )
    _check_budget(budget)

    count = len(targets)
    columns: Dict[str, List[Any]] = {}
    for name in _BUDGET_FIELDS:
        value = getattr(budget, name)
        if value is None:
            columns[name] = [None] * count
        elif not divide_evenly:
            columns[name] = [value] * count
        elif name == "max_clicks":
            columns[name] = split_evenly(int(value), count)
        else:
            columns[name] = split_money_evenly(Decimal(value), count)

    assignments = tuple(
        OfferBudgetAssignment(
            offer_id=offer_id,
            **{name: columns[name][i] for name in _BUDGET_FIELDS},
        )
        for i, offer_id in enumerate(targets)
    )
    return Allocation(scope=scope, divide_evenly=divide_evenly, requested=budget, assignments=assignments)


def find_scope_overallocations(all_budget: BudgetInput, filtered_budget: BudgetInput) -> List[ScopeOverallocation]:
    """Raw conditions where a filtered request asks for more than the "all" totals."""
    found = []
    for name in ("max_clicks", "click_budget_dollars"):
        requested = getattr(filtered_budget, name)
        limit = getattr(all_budget, name)
        if requested is None or limit is None:
            continue
        if Decimal(requested) > Decimal(limit):
            found.append(ScopeOverallocation(field=name, requested=Decimal(requested), limit=Decimal(limit)))
    return found


def validate_filtered_within_all(all_budget: BudgetInput, filtered_budget: BudgetInput) -> None:
    over = find_scope_overallocations(all_budget, filtered_budget)
    if over:
        raise AllocationError(
            code="filtered_exceeds_all",
            message="Filtered allocation exceeds the total set for all offers",
            details={"overallocations": [o.to_dict() for o in over]},
        )


def remaining_after_filtered(all_budget: BudgetInput, filtered_budget: BudgetInput) -> ScopeRemainder:
    """What is left of the "all" totals after the filtered request. May be negative."""
    return ScopeRemainder(
        max_clicks=(all_budget.max_clicks or 0) - (filtered_budget.max_clicks or 0),
        click_budget_dollars=(
            Decimal(all_budget.click_budget_dollars or 0) - Decimal(filtered_budget.click_budget_dollars or 0)
        ),
    )


def find_balance_overflows(allocation: Allocation, balances: AccountBalances) -> List[BudgetOverflow]:
    """
    Compare what the allocation draws from each account with what is there.

    Text and RIPS budgets draw from their own accounts; click dollars are
    paid from the bank balance.
    """
    checks = (
        (OverflowKind.TEXT_BUDGET_EXCEEDED, allocation.total("text_budget"), balances.text_budget),
        (OverflowKind.RIPS_BUDGET_EXCEEDED, allocation.total("rips_budget"), balances.rips_budget),
        (OverflowKind.BANK_BALANCE_EXCEEDED, allocation.total("click_budget_dollars"), balances.bank),
    )
    return [
        BudgetOverflow(kind=kind, needed=needed, available=available)
        for kind, needed, available in checks
        if needed > available
    ]


def ensure_within_balances(allocation: Allocation, balances: AccountBalances) -> None:
    overflows = find_balance_overflows(allocation, balances)
    if overflows:
        raise BudgetOverflowError(overflows)


def plan_allocation(
    offer_ids: Sequence[str],
    budget: BudgetInput,
    divide_evenly: bool,
    scope: AllocationScope = AllocationScope.ALL,
    balances: Optional[AccountBalances] = None,
    all_budget: Optional[BudgetInput] = None,
) -> Allocation:
    """
    Validate and compute an allocation.

    ``all_budget`` is the concurrent "apply to all" request; a filtered
    request may not exceed it. ``balances`` are the merchant's available
    funds.
    """
    if scope == AllocationScope.FILTERED and all_budget is not None:
        validate_filtered_within_all(all_budget, budget)

    allocation = allocate_budget(offer_ids, budget, divide_evenly, scope)

    if balances is not None:
        ensure_within_balances(allocation, balances)

    logger.info(
        "allocation.planned",
        scope=scope.value,
        divide_evenly=divide_evenly,
        target_count=allocation.target_count,
    )
    return allocation


def allocation_updates(allocation: Allocation) -> Dict[str, Dict[str, Any]]:
    """Partial offer updates keyed by offer id, ready for the store."""
    updates: Dict[str, Dict[str, Any]] = {}
    for a in allocation.assignments:
        changes = {
            OFFER_COLUMNS[name]: getattr(a, name)
            for name in _BUDGET_FIELDS
            if getattr(a, name) is not None
        }
        updates[a.offer_id] = changes
    return updates
