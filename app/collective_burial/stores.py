"""Storage collaborators of the scheduler.

The scheduler only talks to the protocols below. ``Sql*`` implementations
work on the Flask-SQLAlchemy session and only flush; committing is left to the
caller so that one request is one transaction. ``InMemory*`` implementations
back the unit tests.
"""
from __future__ import annotations

import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterator, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.collective_burial.capacity import SlotState
from app.collective_burial.errors import ApplicationNotFound, SlotNotFound
from app.core.extensions import db
from app.core.models import (
    APPLICATION_NUMBER_SEQUENCE,
    ApplicationStatus,
    BillingStatus,
    BillingStatusEvent,
    BurialApplication,
    BurialCeremony,
    BurialDocument,
    BurialSlot,
    BurialType,
    BuriedPerson,
    DocumentType,
    NumberSequence,
)

SlotUpdate = Callable[[SlotState], SlotState]


@dataclass(frozen=True)
class PersonDraft:
    name: str
    name_kana: str = ""
    relationship: str = ""
    death_date: date | None = None
    age: int | None = None
    gender: str | None = None
    original_plot_number: str | None = None
    certificate_number: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class CeremonyDraft:
    ceremony_date: date | None = None
    officiant: str | None = None
    religion: str | None = None
    participants: int | None = None
    location: str | None = None
    memo: str | None = None


@dataclass(frozen=True)
class DocumentDraft:
    name: str
    document_type: DocumentType = DocumentType.OTHER
    issued_date: date | None = None
    memo: str | None = None


@dataclass(frozen=True)
class ApplicationDraft:
    contract_plot_id: str
    applicant_name: str
    persons: tuple[PersonDraft, ...]
    application_date: date
    desired_date: date | None = None
    burial_type: BurialType = BurialType.FAMILY
    created_by_user_id: int | None = None
    ceremonies: tuple[CeremonyDraft, ...] = ()
    documents: tuple[DocumentDraft, ...] = ()
    details: dict[str, object] = field(default_factory=dict)

    @property
    def batch_size(self) -> int:
        return len(self.persons)


@dataclass(frozen=True)
class ApplicationSummary:
    application_id: int
    contract_plot_id: str
    status: ApplicationStatus
    person_count: int


@dataclass(frozen=True)
class BillingTransition:
    contract_plot_id: str
    slot_id: int | None
    from_status: BillingStatus
    to_status: BillingStatus
    billing_amount: Decimal | None
    operator_id: int | None
    at: datetime


class SlotStore(Protocol):
    def load_slot(self, contract_plot_id: str) -> SlotState: ...

    def save_slot(self, slot: SlotState) -> SlotState: ...

    def update_slot(self, contract_plot_id: str, update: SlotUpdate) -> SlotState: ...


class ApplicationStore(Protocol):
    def lock_admission(self) -> None: ...

    def load_non_cancelled_aggregate_count(self) -> int: ...

    def save_application(self, draft: ApplicationDraft) -> int: ...

    def load_application(self, application_id: int) -> ApplicationSummary: ...

    def update_application_status(self, application_id: int, status: ApplicationStatus, **changes) -> None: ...


class AuditSink(Protocol):
    def record_billing_transition(self, transition: BillingTransition) -> None: ...


def slot_state_from_row(row: BurialSlot) -> SlotState:
    return SlotState(
        slot_id=row.id,
        contract_plot_id=row.contract_plot_id,
        burial_capacity=row.burial_capacity,
        validity_period_years=row.validity_period_years,
        current_burial_count=row.current_burial_count,
        capacity_reached_date=row.capacity_reached_date,
        billing_scheduled_date=row.billing_scheduled_date,
        billing_status=row.billing_status,
        billing_amount=row.billing_amount,
        contract_date=row.contract_date,
    )


def apply_slot_state(row: BurialSlot, slot: SlotState) -> None:
    row.burial_capacity = slot.burial_capacity
    row.validity_period_years = slot.validity_period_years
    row.current_burial_count = slot.current_burial_count
    row.capacity_reached_date = slot.capacity_reached_date
    row.billing_scheduled_date = slot.billing_scheduled_date
    row.billing_status = slot.billing_status
    row.billing_amount = slot.billing_amount


class SqlSlotStore:
    def __init__(self, session=None) -> None:
        self.session = session or db.session

    def _row(self, contract_plot_id: str, lock: bool = False) -> BurialSlot:
        query = select(BurialSlot).where(BurialSlot.contract_plot_id == contract_plot_id)
        if lock:
            query = query.with_for_update()
        row = self.session.execute(query).scalar_one_or_none()
        if row is None:
            raise SlotNotFound(contract_plot_id)
        return row

    def load_slot(self, contract_plot_id: str) -> SlotState:
        return slot_state_from_row(self._row(contract_plot_id))

    def save_slot(self, slot: SlotState) -> SlotState:
        row = self._row(slot.contract_plot_id)
        apply_slot_state(row, slot)
        self.session.flush()
        return slot_state_from_row(row)

    def update_slot(self, contract_plot_id: str, update: SlotUpdate) -> SlotState:
        row = self._row(contract_plot_id, lock=True)
        updated = update(slot_state_from_row(row))
        apply_slot_state(row, updated)
        self.session.flush()
        return slot_state_from_row(row)


class SqlApplicationStore:
    def __init__(self, session=None) -> None:
        self.session = session or db.session

    def _application(self, application_id: int) -> BurialApplication:
        application = self.session.get(BurialApplication, application_id)
        if application is None:
            raise ApplicationNotFound(application_id)
        return application

    def _highest_issued_number(self) -> int:
        numbers = self.session.execute(select(BurialApplication.application_number)).scalars()
        return max((int(number.rsplit("-", 1)[-1]) for number in numbers), default=0)

    def _sequence(self) -> NumberSequence:
        query = (
            select(NumberSequence)
            .where(NumberSequence.name == APPLICATION_NUMBER_SEQUENCE)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        counter = self.session.execute(query).scalar_one_or_none()
        if counter is not None:
            return counter

        # First use on a database that predates the counter row
        savepoint = self.session.begin_nested()
        try:
            counter = NumberSequence(name=APPLICATION_NUMBER_SEQUENCE, current_value=self._highest_issued_number())
            self.session.add(counter)
            self.session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            savepoint.rollback()
            return self.session.execute(query).scalar_one()

    def lock_admission(self) -> None:
        """Take the counter row lock for the rest of the transaction.

        Admission decisions of concurrent transactions queue behind it, so the
        aggregate read afterwards includes every committed application.
        """
        self._sequence()

    def _next_application_number(self) -> str:
        counter = self._sequence()
        counter.current_value += 1
        self.session.flush()
        return f"CBA-{counter.current_value:04d}"

    def load_non_cancelled_aggregate_count(self) -> int:
        total = (
            self.session.query(func.count(BuriedPerson.id))
            .join(BurialApplication, BurialApplication.id == BuriedPerson.application_id)
            .filter(BurialApplication.status != ApplicationStatus.CANCELLED)
            .scalar()
        )
        return int(total or 0)

    def save_application(self, draft: ApplicationDraft) -> int:
        slot = self.session.execute(
            select(BurialSlot).where(BurialSlot.contract_plot_id == draft.contract_plot_id)
        ).scalar_one_or_none()
        if slot is None:
            raise SlotNotFound(draft.contract_plot_id)
        application = BurialApplication(
            application_number=self._next_application_number(),
            slot_id=slot.id,
            status=ApplicationStatus.PENDING,
            application_date=draft.application_date,
            desired_date=draft.desired_date,
            burial_type=draft.burial_type,
            applicant_name=draft.applicant_name,
            created_by_user_id=draft.created_by_user_id,
            **draft.details,
        )
        application.persons = [
            BuriedPerson(
                position=index,
                name=person.name,
                name_kana=person.name_kana,
                relationship_label=person.relationship,
                death_date=person.death_date,
                age=person.age,
                gender=person.gender,
                original_plot_number=person.original_plot_number,
                certificate_number=person.certificate_number,
                notes=person.notes,
            )
            for index, person in enumerate(draft.persons, start=1)
        ]
        application.ceremonies = [
            BurialCeremony(
                position=index,
                ceremony_date=ceremony.ceremony_date,
                officiant=ceremony.officiant,
                religion=ceremony.religion,
                participants=ceremony.participants,
                location=ceremony.location,
                memo=ceremony.memo,
            )
            for index, ceremony in enumerate(draft.ceremonies, start=1)
        ]
        application.documents = [
            BurialDocument(
                position=index,
                document_type=document.document_type,
                name=document.name,
                issued_date=document.issued_date,
                memo=document.memo,
            )
            for index, document in enumerate(draft.documents, start=1)
        ]
        self.session.add(application)
        self.session.flush()
        return application.id

    def load_application(self, application_id: int) -> ApplicationSummary:
        application = self._application(application_id)
        return ApplicationSummary(
            application_id=application.id,
            contract_plot_id=application.slot.contract_plot_id,
            status=application.status,
            person_count=application.person_count,
        )

    def update_application_status(self, application_id: int, status: ApplicationStatus, **changes) -> None:
        application = self._application(application_id)
        application.status = status
        for key, value in changes.items():
            setattr(application, key, value)
        self.session.flush()


class SqlAuditSink:
    def __init__(self, session=None) -> None:
        self.session = session or db.session

    def record_billing_transition(self, transition: BillingTransition) -> None:
        self.session.add(
            BillingStatusEvent(
                slot_id=transition.slot_id,
                from_status=transition.from_status,
                to_status=transition.to_status,
                billing_amount=transition.billing_amount,
                event_at=transition.at,
                details=f"{transition.from_status.value} -> {transition.to_status.value}",
                user_id=transition.operator_id,
            )
        )
        self.session.flush()


class InMemorySlotStore:
    def __init__(self, slots: list[SlotState] | None = None) -> None:
        self._slots: dict[str, SlotState] = {}
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        for slot in slots or []:
            self._slots[slot.contract_plot_id] = slot

    @contextmanager
    def _locked(self, contract_plot_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks[contract_plot_id]
        with lock:
            yield

    def load_slot(self, contract_plot_id: str) -> SlotState:
        try:
            return self._slots[contract_plot_id]
        except KeyError as exc:
            raise SlotNotFound(contract_plot_id) from exc

    def save_slot(self, slot: SlotState) -> SlotState:
        with self._locked(slot.contract_plot_id):
            self._slots[slot.contract_plot_id] = slot
        return slot

    def update_slot(self, contract_plot_id: str, update: SlotUpdate) -> SlotState:
        with self._locked(contract_plot_id):
            updated = update(self.load_slot(contract_plot_id))
            self._slots[contract_plot_id] = updated
        return updated


@dataclass
class _StoredApplication:
    draft: ApplicationDraft
    status: ApplicationStatus = ApplicationStatus.PENDING
    changes: dict[str, object] = field(default_factory=dict)


class InMemoryApplicationStore:
    def __init__(self) -> None:
        self._applications: dict[int, _StoredApplication] = {}
        self._next_id = 1

    def lock_admission(self) -> None:
        pass

    def load_non_cancelled_aggregate_count(self) -> int:
        return sum(
            stored.draft.batch_size
            for stored in self._applications.values()
            if stored.status != ApplicationStatus.CANCELLED
        )

    def save_application(self, draft: ApplicationDraft) -> int:
        application_id = self._next_id
        self._next_id += 1
        self._applications[application_id] = _StoredApplication(draft=draft)
        return application_id

    def load_application(self, application_id: int) -> ApplicationSummary:
        stored = self._applications.get(application_id)
        if stored is None:
            raise ApplicationNotFound(application_id)
        return ApplicationSummary(
            application_id=application_id,
            contract_plot_id=stored.draft.contract_plot_id,
            status=stored.status,
            person_count=stored.draft.batch_size,
        )

    def update_application_status(self, application_id: int, status: ApplicationStatus, **changes) -> None:
        stored = self._applications.get(application_id)
        if stored is None:
            raise ApplicationNotFound(application_id)
        stored.status = status
        stored.changes.update(changes)

    def changes_for(self, application_id: int) -> dict[str, object]:
        return dict(self._applications[application_id].changes)


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.transitions: list[BillingTransition] = []

    def record_billing_transition(self, transition: BillingTransition) -> None:
        self.transitions.append(transition)
