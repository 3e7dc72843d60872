from __future__ import annotations

import threading
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from app.collective_burial.capacity import AdmissionDecision, CapacityPolicy, SlotState
from app.collective_burial.errors import (
    ApplicationNotFound,
    InvalidApplication,
    InvalidCount,
    InvalidTransition,
    NotReady,
    SlotNotFound,
)
from app.collective_burial.periods import ConsolidationTrack
from app.collective_burial import scheduler as scheduler_module
from app.collective_burial.scheduler import CollectiveBurialScheduler
from app.collective_burial.stores import (
    ApplicationDraft,
    InMemoryApplicationStore,
    InMemoryAuditSink,
    InMemorySlotStore,
    PersonDraft,
)
from app.core.models import ApplicationStatus, BillingStatus

TODAY = date(2024, 6, 1)
NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def slots():
    return InMemorySlotStore(
        [
            SlotState(
                contract_plot_id="cp-010",
                burial_capacity=3,
                validity_period_years=33,
                current_burial_count=1,
                contract_date=date(2016, 4, 1),
            ),
            SlotState(
                contract_plot_id="cp-011",
                burial_capacity=10,
                validity_period_years=7,
                contract_date=date(2012, 1, 1),
            ),
        ]
    )


@pytest.fixture
def applications():
    return InMemoryApplicationStore()


@pytest.fixture
def audit():
    return InMemoryAuditSink()


@pytest.fixture
def scheduler(slots, applications, audit):
    policy = CapacityPolicy(
        max_persons_per_application=8,
        max_total_capacity=10,
        warning_threshold_pct=80,
        critical_threshold_pct=95,
    )
    return CollectiveBurialScheduler(slots, applications, audit, policy, clock=lambda: TODAY, timestamp=lambda: NOW)


def _draft(contract_plot_id="cp-010", persons=1, applicant="山田 太郎") -> ApplicationDraft:
    return ApplicationDraft(
        contract_plot_id=contract_plot_id,
        applicant_name=applicant,
        persons=tuple(PersonDraft(name=f"故人 {index}") for index in range(persons)),
        application_date=TODAY,
    )


def test_submit_commits_and_classifies(scheduler, applications):
    outcome = scheduler.submit(_draft(persons=2))
    assert outcome.committed
    assert outcome.result.decision == AdmissionDecision.ACCEPTED
    assert outcome.consolidation.track == ConsolidationTrack.THIRTY_THREE_YEAR
    assert outcome.consolidation.target_year == 2049
    assert applications.load_non_cancelled_aggregate_count() == 2


def test_submit_warn_needs_confirmation(scheduler, applications):
    scheduler.submit(_draft(persons=7, contract_plot_id="cp-011"))
    outcome = scheduler.submit(_draft(persons=1))
    assert outcome.result.needs_confirmation
    assert not outcome.committed
    assert applications.load_non_cancelled_aggregate_count() == 7

    confirmed = scheduler.submit(_draft(persons=1), confirmed=True)
    assert confirmed.committed
    assert applications.load_non_cancelled_aggregate_count() == 8


def test_submit_rejected_is_not_saved(scheduler, applications):
    outcome = scheduler.submit(_draft(persons=9))
    assert outcome.result.rejected
    assert outcome.result.reason == "per-application limit"
    assert applications.load_non_cancelled_aggregate_count() == 0

    scheduler.submit(_draft(persons=8, contract_plot_id="cp-011"), confirmed=True)
    over = scheduler.submit(_draft(persons=3), confirmed=True)
    assert over.result.rejected
    assert over.result.reason == "total capacity"
    assert applications.load_non_cancelled_aggregate_count() == 8


def test_cancelled_applications_release_capacity(scheduler, applications):
    first = scheduler.submit(_draft(persons=8, contract_plot_id="cp-011"), confirmed=True)
    scheduler.cancel(first.application_id)
    assert applications.load_non_cancelled_aggregate_count() == 0
    assert scheduler.submit(_draft(persons=2)).result.accepted


def test_submit_validates_draft(scheduler):
    with pytest.raises(InvalidApplication):
        scheduler.submit(_draft(persons=0))
    with pytest.raises(InvalidApplication):
        scheduler.submit(_draft(applicant=" "))
    with pytest.raises(SlotNotFound):
        scheduler.submit(_draft(contract_plot_id="cp-missing"))


def test_concurrent_submissions_never_exceed_capacity(scheduler, applications):
    barrier = threading.Barrier(6)

    def _submit():
        barrier.wait()
        scheduler.submit(_draft(persons=3, contract_plot_id="cp-011"), confirmed=True)

    threads = [threading.Thread(target=_submit) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert applications.load_non_cancelled_aggregate_count() == 9


def test_commit_runs_while_admission_lock_is_held(scheduler):
    held = []

    def _commit():
        held.append(scheduler_module._ADMISSION_LOCK.locked())

    assert scheduler.submit(_draft(persons=2), commit=_commit).committed
    assert held == [True]

    assert scheduler.submit(_draft(persons=9), commit=_commit).result.rejected
    assert held == [True]


def test_complete_increments_slot_and_reaches_capacity(scheduler, slots):
    outcome = scheduler.submit(_draft(persons=2))
    slot = scheduler.complete(outcome.application_id)
    assert slot.current_burial_count == 3
    assert slot.capacity_reached_date == TODAY
    assert slot.billing_scheduled_date == date(2057, 6, 1)
    assert slots.load_slot("cp-010") == slot


def test_complete_is_idempotent(scheduler):
    outcome = scheduler.submit(_draft(persons=1))
    first = scheduler.complete(outcome.application_id)
    again = scheduler.complete(outcome.application_id)
    assert again == first
    assert again.current_burial_count == 2


def test_complete_over_capacity_leaves_application_open(scheduler, applications):
    outcome = scheduler.submit(_draft(persons=3))
    with pytest.raises(InvalidCount):
        scheduler.complete(outcome.application_id)
    assert applications.load_application(outcome.application_id).status == ApplicationStatus.PENDING


def test_schedule_then_cancel(scheduler, applications):
    outcome = scheduler.submit(_draft())
    scheduler.schedule(outcome.application_id, date(2024, 7, 1), officiant="住職")
    assert applications.load_application(outcome.application_id).status == ApplicationStatus.SCHEDULED
    assert applications.changes_for(outcome.application_id)["ceremony_date"] == date(2024, 7, 1)

    scheduler.cancel(outcome.application_id)
    with pytest.raises(InvalidTransition):
        scheduler.complete(outcome.application_id)
    with pytest.raises(InvalidTransition):
        scheduler.schedule(outcome.application_id, date(2024, 8, 1))


def test_completed_application_cannot_be_cancelled(scheduler):
    outcome = scheduler.submit(_draft())
    scheduler.complete(outcome.application_id)
    with pytest.raises(InvalidTransition):
        scheduler.cancel(outcome.application_id)


def test_unknown_application(scheduler):
    with pytest.raises(ApplicationNotFound):
        scheduler.cancel(999)


def test_billing_flow_records_audit(scheduler, audit):
    with pytest.raises(NotReady):
        scheduler.change_billing_status("cp-010", BillingStatus.BILLED, operator_id=1)
    assert audit.transitions == []

    scheduler.record_burial_count("cp-010", 3)
    billed = scheduler.change_billing_status("cp-010", BillingStatus.BILLED, 1, Decimal("300000"))
    assert billed.billing_status == BillingStatus.BILLED
    assert billed.billing_amount == Decimal("300000")

    scheduler.change_billing_status("cp-010", BillingStatus.BILLED, 1)
    paid = scheduler.change_billing_status("cp-010", BillingStatus.PAID, 2)
    assert paid.billing_status == BillingStatus.PAID

    assert [(t.from_status, t.to_status, t.operator_id) for t in audit.transitions] == [
        (BillingStatus.PENDING, BillingStatus.BILLED, 1),
        (BillingStatus.BILLED, BillingStatus.PAID, 2),
    ]
    assert audit.transitions[0].at == NOW


def test_update_slot_settings(scheduler):
    slot = scheduler.update_slot_settings("cp-010", burial_capacity=1)
    assert slot.capacity_reached_date == TODAY
    assert slot.billing_scheduled_date == date(2057, 6, 1)

    slot = scheduler.update_slot_settings("cp-010", validity_period_years=13)
    assert slot.billing_scheduled_date == date(2037, 6, 1)
