from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable

from app.collective_burial.billing import transition_billing
from app.collective_burial.capacity import (
    AdmissionResult,
    CapacityPolicy,
    SlotState,
    change_capacity,
    change_validity_period,
    evaluate_admission,
    recompute_slot,
)
from app.collective_burial.errors import InvalidApplication, InvalidTransition
from app.collective_burial.periods import Consolidation, classify
from app.collective_burial.stores import (
    ApplicationDraft,
    ApplicationStore,
    AuditSink,
    BillingTransition,
    SlotStore,
)
from app.core.models import ApplicationStatus, BillingStatus, utcnow

logger = logging.getLogger(__name__)

APPLICATION_TRANSITIONS: dict[ApplicationStatus, set[ApplicationStatus]] = {
    ApplicationStatus.PENDING: {
        ApplicationStatus.SCHEDULED,
        ApplicationStatus.COMPLETED,
        ApplicationStatus.CANCELLED,
    },
    ApplicationStatus.SCHEDULED: {
        ApplicationStatus.SCHEDULED,
        ApplicationStatus.COMPLETED,
        ApplicationStatus.CANCELLED,
    },
    ApplicationStatus.COMPLETED: set(),
    ApplicationStatus.CANCELLED: set(),
}

# Admission reads the aggregate and commits the application as one step.
_ADMISSION_LOCK = threading.Lock()


@dataclass(frozen=True)
class SubmissionOutcome:
    result: AdmissionResult
    application_id: int | None = None
    consolidation: Consolidation | None = None

    @property
    def committed(self) -> bool:
        return self.application_id is not None


class CollectiveBurialScheduler:
    """Capacity and billing workflow over injected stores.

    ``clock`` supplies the date stamped as capacity-reached; ``timestamp``
    supplies audit times. Nothing here commits: the caller owns the
    transaction.
    """

    def __init__(
        self,
        slots: SlotStore,
        applications: ApplicationStore,
        audit: AuditSink,
        policy: CapacityPolicy,
        clock: Callable[[], date] = date.today,
        timestamp: Callable[[], datetime] = utcnow,
    ) -> None:
        self.slots = slots
        self.applications = applications
        self.audit = audit
        self.policy = policy
        self.clock = clock
        self.timestamp = timestamp

    def check_admission(self, batch_size: int) -> AdmissionResult:
        return evaluate_admission(batch_size, self.applications.load_non_cancelled_aggregate_count(), self.policy)

    def submit(
        self,
        draft: ApplicationDraft,
        confirmed: bool = False,
        commit: Callable[[], None] | None = None,
    ) -> SubmissionOutcome:
        """Evaluate ``draft`` and persist it when admission allows.

        A ``warn`` result is only committed when ``confirmed`` is set, after
        re-evaluating against the aggregate read under the admission lock.
        ``commit`` runs before the lock is released, so the next admission
        reads an aggregate that includes this application.
        """
        _validate_draft(draft)
        slot = self.slots.load_slot(draft.contract_plot_id)

        with _ADMISSION_LOCK:
            self.applications.lock_admission()
            result = self.check_admission(draft.batch_size)
            if result.rejected:
                logger.info(
                    "Application for %s rejected: %s (batch=%s)",
                    draft.contract_plot_id,
                    result.reason,
                    draft.batch_size,
                )
                return SubmissionOutcome(result=result)
            if result.needs_confirmation and not confirmed:
                logger.info(
                    "Application for %s needs confirmation: %s at %.1f%%",
                    draft.contract_plot_id,
                    result.status.value,
                    result.utilization_pct,
                )
                return SubmissionOutcome(result=result)
            application_id = self.applications.save_application(draft)
            if commit is not None:
                commit()

        logger.info(
            "Application %s committed for %s with %s persons (%s)",
            application_id,
            draft.contract_plot_id,
            draft.batch_size,
            result.status.value,
        )
        consolidation = classify(slot.contract_date) if slot.contract_date else None
        return SubmissionOutcome(result=result, application_id=application_id, consolidation=consolidation)

    def record_burial_count(self, contract_plot_id: str, new_count: int) -> SlotState:
        today = self.clock()
        slot = self.slots.update_slot(contract_plot_id, lambda current: recompute_slot(current, new_count, today))
        logger.debug("Slot %s count set to %s", contract_plot_id, new_count)
        return slot

    def update_slot_settings(
        self,
        contract_plot_id: str,
        burial_capacity: int | None = None,
        validity_period_years: int | None = None,
    ) -> SlotState:
        today = self.clock()

        def _apply(current: SlotState) -> SlotState:
            updated = current
            if validity_period_years is not None:
                updated = change_validity_period(updated, validity_period_years)
            if burial_capacity is not None:
                updated = change_capacity(updated, burial_capacity, today)
            return updated

        return self.slots.update_slot(contract_plot_id, _apply)

    def _transition_application(self, application_id: int, new_status: ApplicationStatus, **changes):
        summary = self.applications.load_application(application_id)
        if new_status not in APPLICATION_TRANSITIONS[summary.status]:
            raise InvalidTransition(summary.status.value, new_status.value)
        self.applications.update_application_status(application_id, new_status, **changes)
        logger.info("Application %s: %s -> %s", application_id, summary.status.value, new_status.value)
        return summary

    def schedule(self, application_id: int, ceremony_date: date, **ceremony) -> None:
        if ceremony_date is None:
            raise InvalidApplication("A ceremony date is required to schedule an application")
        self._transition_application(
            application_id,
            ApplicationStatus.SCHEDULED,
            ceremony_date=ceremony_date,
            **ceremony,
        )

    def cancel(self, application_id: int) -> None:
        self._transition_application(application_id, ApplicationStatus.CANCELLED)

    def complete(self, application_id: int) -> SlotState:
        summary = self.applications.load_application(application_id)
        if summary.status == ApplicationStatus.COMPLETED:
            return self.slots.load_slot(summary.contract_plot_id)
        if ApplicationStatus.COMPLETED not in APPLICATION_TRANSITIONS[summary.status]:
            raise InvalidTransition(summary.status.value, ApplicationStatus.COMPLETED.value)

        today = self.clock()
        slot = self.slots.update_slot(
            summary.contract_plot_id,
            lambda current: recompute_slot(current, current.current_burial_count + summary.person_count, today),
        )
        self._transition_application(application_id, ApplicationStatus.COMPLETED)
        if slot.capacity_reached_date == today and slot.current_burial_count == slot.burial_capacity:
            logger.info(
                "Slot %s reached capacity on %s; billing scheduled for %s",
                slot.contract_plot_id,
                slot.capacity_reached_date,
                slot.billing_scheduled_date,
            )
        return slot

    def change_billing_status(
        self,
        contract_plot_id: str,
        new_status: BillingStatus,
        operator_id: int | None,
        billing_amount: Decimal | None = None,
    ) -> SlotState:
        previous: list[SlotState] = []

        def _apply(current: SlotState) -> SlotState:
            previous.append(current)
            return transition_billing(current, new_status, billing_amount)

        slot = self.slots.update_slot(contract_plot_id, _apply)
        before = previous[0]
        if before.billing_status == slot.billing_status:
            logger.debug("Billing status of %s unchanged (%s)", contract_plot_id, slot.billing_status.value)
            return slot

        self.audit.record_billing_transition(
            BillingTransition(
                contract_plot_id=contract_plot_id,
                slot_id=slot.slot_id,
                from_status=before.billing_status,
                to_status=slot.billing_status,
                billing_amount=slot.billing_amount,
                operator_id=operator_id,
                at=self.timestamp(),
            )
        )
        logger.info(
            "Billing status of %s: %s -> %s by user %s",
            contract_plot_id,
            before.billing_status.value,
            slot.billing_status.value,
            operator_id,
        )
        return slot


def _validate_draft(draft: ApplicationDraft) -> None:
    if not draft.persons:
        raise InvalidApplication("An application needs at least one person")
    if not (draft.applicant_name or "").strip():
        raise InvalidApplication("Applicant name is required")
    for index, person in enumerate(draft.persons, start=1):
        if not (person.name or "").strip():
            raise InvalidApplication(f"Person {index} has no name")
