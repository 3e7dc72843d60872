from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

from app.collective_burial.capacity import SlotState
from app.collective_burial.errors import InvalidTransition, NotReady
from app.core.models import BillingStatus

BILLING_TRANSITIONS: dict[BillingStatus, set[BillingStatus]] = {
    BillingStatus.PENDING: {BillingStatus.PENDING, BillingStatus.BILLED},
    BillingStatus.BILLED: {BillingStatus.BILLED, BillingStatus.PAID},
    BillingStatus.PAID: {BillingStatus.PAID},
}


def parse_billing_status(value: str | BillingStatus) -> BillingStatus:
    if isinstance(value, BillingStatus):
        return value
    raw = (value or "").strip().lower()
    try:
        return BillingStatus(raw)
    except ValueError as exc:
        raise InvalidTransition("?", raw or "<empty>") from exc


def transition_billing(
    slot: SlotState,
    new_status: BillingStatus,
    billing_amount: Decimal | None = None,
) -> SlotState:
    current = slot.billing_status
    if new_status not in BILLING_TRANSITIONS[current]:
        raise InvalidTransition(current.value, new_status.value)
    if current == BillingStatus.PENDING and new_status == BillingStatus.BILLED and not slot.capacity_reached:
        raise NotReady(slot.contract_plot_id)

    amount = slot.billing_amount if billing_amount is None else billing_amount
    return replace(slot, billing_status=new_status, billing_amount=amount)
