from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Mapping

from app.collective_burial.errors import InvalidApplication, InvalidCount
from app.core.models import BillingStatus

REASON_PER_APPLICATION_LIMIT = "per-application limit"
REASON_TOTAL_CAPACITY = "total capacity"


class AdmissionDecision(str, Enum):
    ACCEPTED = "accepted"
    WARN = "warn"
    REJECTED = "rejected"


class CapacityStatus(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"
    FULL = "full"


@dataclass(frozen=True)
class SlotState:
    contract_plot_id: str
    burial_capacity: int
    validity_period_years: int
    current_burial_count: int = 0
    capacity_reached_date: date | None = None
    billing_scheduled_date: date | None = None
    billing_status: BillingStatus = BillingStatus.PENDING
    billing_amount: Decimal | None = None
    contract_date: date | None = None
    slot_id: int | None = None

    @property
    def capacity_reached(self) -> bool:
        return self.capacity_reached_date is not None


@dataclass(frozen=True)
class CapacityPolicy:
    max_persons_per_application: int = 10
    max_total_capacity: int = 500
    warning_threshold_pct: float = 80.0
    critical_threshold_pct: float = 95.0

    def __post_init__(self) -> None:
        if self.max_persons_per_application <= 0:
            raise ValueError("max_persons_per_application must be positive")
        if self.max_total_capacity <= 0:
            raise ValueError("max_total_capacity must be positive")
        if not 0 < self.warning_threshold_pct <= self.critical_threshold_pct <= 100:
            raise ValueError("Thresholds must satisfy 0 < warning <= critical <= 100")

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> CapacityPolicy:
        return cls(
            max_persons_per_application=int(config.get("COLLECTIVE_BURIAL_MAX_PERSONS_PER_APPLICATION", 10)),
            max_total_capacity=int(config.get("COLLECTIVE_BURIAL_MAX_TOTAL_CAPACITY", 500)),
            warning_threshold_pct=float(config.get("COLLECTIVE_BURIAL_WARNING_THRESHOLD", 80)),
            critical_threshold_pct=float(config.get("COLLECTIVE_BURIAL_CRITICAL_THRESHOLD", 95)),
        )


@dataclass(frozen=True)
class AdmissionResult:
    decision: AdmissionDecision
    status: CapacityStatus | None
    batch_size: int
    future_total: int | None = None
    utilization_pct: float | None = None
    reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.decision == AdmissionDecision.ACCEPTED

    @property
    def needs_confirmation(self) -> bool:
        return self.decision == AdmissionDecision.WARN

    @property
    def rejected(self) -> bool:
        return self.decision == AdmissionDecision.REJECTED

    def to_dict(self) -> dict[str, object]:
        return {
            "decision": self.decision.value,
            "status": self.status.value if self.status else None,
            "reason": self.reason,
            "batchSize": self.batch_size,
            "futureTotal": self.future_total,
            "utilizationPct": self.utilization_pct,
        }


def add_years(base: date, years: int) -> date:
    try:
        return base.replace(year=base.year + years)
    except ValueError:
        # Feb 29 into a non-leap year
        return base.replace(month=2, day=28, year=base.year + years)


def recompute_slot(slot: SlotState, new_count: int, today: date) -> SlotState:
    """Return ``slot`` with ``new_count`` applied.

    The capacity-reached date is stamped with ``today`` the first time the
    count equals the capacity and is never cleared afterwards, even when a
    correction lowers the count again. The billing-scheduled date follows it.
    """
    if new_count < 0 or new_count > slot.burial_capacity:
        raise InvalidCount(new_count, slot.burial_capacity)

    reached = slot.capacity_reached_date
    scheduled = slot.billing_scheduled_date
    if new_count == slot.burial_capacity and reached is None:
        reached = today
        scheduled = add_years(reached, slot.validity_period_years)
    return replace(
        slot,
        current_burial_count=new_count,
        capacity_reached_date=reached,
        billing_scheduled_date=scheduled,
    )


def change_validity_period(slot: SlotState, validity_period_years: int) -> SlotState:
    if validity_period_years <= 0:
        raise ValueError("validity_period_years must be positive")
    scheduled = slot.billing_scheduled_date
    if slot.capacity_reached_date is not None:
        scheduled = add_years(slot.capacity_reached_date, validity_period_years)
    return replace(slot, validity_period_years=validity_period_years, billing_scheduled_date=scheduled)


def change_capacity(slot: SlotState, burial_capacity: int, today: date) -> SlotState:
    if burial_capacity <= 0:
        raise ValueError("burial_capacity must be positive")
    if burial_capacity < slot.current_burial_count:
        raise InvalidCount(slot.current_burial_count, burial_capacity)
    return recompute_slot(replace(slot, burial_capacity=burial_capacity), slot.current_burial_count, today)


def evaluate_admission(batch_size: int, current_aggregate_count: int, policy: CapacityPolicy) -> AdmissionResult:
    """Decide whether a batch of ``batch_size`` persons may be admitted.

    ``current_aggregate_count`` is the number of persons across every
    non-cancelled application, read by the caller.
    """
    if batch_size <= 0:
        raise InvalidApplication("An application needs at least one person")
    if current_aggregate_count < 0:
        raise InvalidApplication("Aggregate count cannot be negative")

    if batch_size > policy.max_persons_per_application:
        return AdmissionResult(
            decision=AdmissionDecision.REJECTED,
            status=None,
            batch_size=batch_size,
            reason=REASON_PER_APPLICATION_LIMIT,
        )

    future_total = current_aggregate_count + batch_size
    utilization_pct = future_total / policy.max_total_capacity * 100

    if future_total > policy.max_total_capacity:
        decision, status = AdmissionDecision.REJECTED, CapacityStatus.FULL
    elif utilization_pct >= policy.critical_threshold_pct:
        decision, status = AdmissionDecision.WARN, CapacityStatus.CRITICAL
    elif utilization_pct >= policy.warning_threshold_pct:
        decision, status = AdmissionDecision.WARN, CapacityStatus.WARNING
    else:
        decision, status = AdmissionDecision.ACCEPTED, CapacityStatus.SAFE

    return AdmissionResult(
        decision=decision,
        status=status,
        batch_size=batch_size,
        future_total=future_total,
        utilization_pct=utilization_pct,
        reason=REASON_TOTAL_CAPACITY if decision == AdmissionDecision.REJECTED else None,
    )


def capacity_status(current: int, maximum: int, policy: CapacityPolicy) -> CapacityStatus:
    if current >= maximum:
        return CapacityStatus.FULL
    percentage = current / maximum * 100
    if percentage >= policy.critical_threshold_pct:
        return CapacityStatus.CRITICAL
    if percentage >= policy.warning_threshold_pct:
        return CapacityStatus.WARNING
    return CapacityStatus.SAFE


def remaining_capacity(current: int, maximum: int) -> int:
    return max(0, maximum - current)


def capacity_percentage(current: int, maximum: int) -> int:
    return min(100, round(current / maximum * 100))
