from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterator

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.orm import joinedload

from app.collective_burial.billing import parse_billing_status
from app.collective_burial.capacity import (
    CapacityPolicy,
    capacity_percentage,
    capacity_status,
    remaining_capacity,
)
from app.collective_burial.errors import (
    ApplicationNotFound,
    CollectiveBurialError,
    InvalidApplication,
    SlotNotFound,
)
from app.collective_burial.periods import classify, group_by_target_year, track_label
from app.collective_burial.scheduler import CollectiveBurialScheduler, SubmissionOutcome
from app.collective_burial.stores import (
    ApplicationDraft,
    CeremonyDraft,
    DocumentDraft,
    PersonDraft,
    SqlApplicationStore,
    SqlAuditSink,
    SqlSlotStore,
)
from app.core.extensions import db
from app.core.i18n import translate
from app.core.models import (
    ApplicationStatus,
    BillingStatus,
    BurialApplication,
    BurialCeremony,
    BurialSlot,
    BurialType,
    BuriedPerson,
    DocumentType,
)
from app.core.utils import money

logger = logging.getLogger(__name__)

SLOT_SORT_COLUMNS = {
    "billing_scheduled_date": BurialSlot.billing_scheduled_date,
    "current_burial_count": BurialSlot.current_burial_count,
    "created_at": BurialSlot.created_at,
}
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

APPLICATION_DETAIL_FIELDS = {
    "mainRepresentative": "main_representative",
    "applicantNameKana": "applicant_name_kana",
    "applicantPhone": "applicant_phone",
    "applicantEmail": "applicant_email",
    "applicantPostalCode": "applicant_postal_code",
    "applicantAddress": "applicant_address",
    "paymentMethod": "payment_method",
    "specialRequests": "special_requests",
}
NON_NULL_DETAIL_FIELDS = {"main_representative", "applicant_name_kana", "applicant_phone", "applicant_address"}


def capacity_policy() -> CapacityPolicy:
    return CapacityPolicy.from_config(current_app.config)


def today() -> date:
    return current_app.config["COLLECTIVE_BURIAL_CLOCK"]()


def scheduler() -> CollectiveBurialScheduler:
    return CollectiveBurialScheduler(
        slots=SqlSlotStore(),
        applications=SqlApplicationStore(),
        audit=SqlAuditSink(),
        policy=capacity_policy(),
        clock=today,
    )


@contextmanager
def unit_of_work() -> Iterator[None]:
    try:
        yield
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _text(value: object) -> str:
    return "" if value is None else str(value).strip()


def _optional_text(value: object) -> str | None:
    return _text(value) or None


def _parse_iso_date(value: object, field_name: str) -> date:
    raw = _text(value)
    if not raw:
        raise ValueError(f"Missing {field_name}")
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid date format for {field_name}") from exc


def _parse_optional_iso_date(value: object, field_name: str) -> date | None:
    if not _text(value):
        return None
    return _parse_iso_date(value, field_name)


def _parse_int(value: object, field_name: str, minimum: int | None = None) -> int:
    raw = _text(value)
    if not raw:
        raise ValueError(f"Missing {field_name}")
    try:
        number = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {field_name}") from exc
    if minimum is not None and number < minimum:
        raise ValueError(f"{field_name} must be at least {minimum}")
    return number


def _parse_optional_int(value: object, field_name: str, minimum: int | None = None) -> int | None:
    if not _text(value):
        return None
    return _parse_int(value, field_name, minimum)


def _parse_optional_decimal(value: object, field_name: str) -> Decimal | None:
    raw = _text(value).replace(",", "")
    if not raw:
        return None
    try:
        amount = Decimal(raw).quantize(Decimal("0.01"))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount for {field_name}") from exc
    if amount < 0:
        raise ValueError(f"{field_name} cannot be negative")
    return amount


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _amount(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def slot_by_id(slot_id: int) -> BurialSlot:
    slot = db.session.get(BurialSlot, slot_id)
    if slot is None:
        raise SlotNotFound(slot_id)
    return slot


def application_by_id(application_id: int) -> BurialApplication:
    application = (
        BurialApplication.query.options(joinedload(BurialApplication.persons), joinedload(BurialApplication.slot))
        .filter_by(id=application_id)
        .first()
    )
    if application is None:
        raise ApplicationNotFound(application_id)
    return application


def serialize_consolidation(contract_date: date) -> dict[str, object]:
    consolidation = classify(contract_date)
    return {
        "periodType": consolidation.track.value,
        "periodLabel": track_label(consolidation.track),
        "yearsUntilBurial": consolidation.track.years,
        "collectiveBurialYear": consolidation.target_year,
    }


def serialize_slot(slot: BurialSlot, detail: bool = False) -> dict[str, object]:
    data: dict[str, object] = {
        "id": slot.id,
        "contractPlotId": slot.contract_plot_id,
        "plotNumber": slot.plot_number,
        "areaName": slot.area_name,
        "applicantName": slot.applicant_name,
        "applicantNameKana": slot.applicant_name_kana,
        "contractDate": _iso(slot.contract_date),
        "burialCapacity": slot.burial_capacity,
        "currentBurialCount": slot.current_burial_count,
        "capacityReachedDate": _iso(slot.capacity_reached_date),
        "validityPeriodYears": slot.validity_period_years,
        "billingScheduledDate": _iso(slot.billing_scheduled_date),
        "billingStatus": slot.billing_status.value,
        "billingStatusLabel": translate(f"billing.{slot.billing_status.value}"),
        "billingAmount": _amount(slot.billing_amount),
        "billingAmountLabel": money(slot.billing_amount),
        "notes": slot.notes,
        "consolidation": serialize_consolidation(slot.contract_date),
        "createdAt": slot.created_at.isoformat(),
        "updatedAt": slot.updated_at.isoformat(),
    }
    persons = [
        person
        for application in slot.applications
        if application.status == ApplicationStatus.COMPLETED
        for person in application.persons
    ]
    if detail:
        data["buriedPersons"] = [serialize_person(person) for person in persons]
        data["billingHistory"] = [
            {
                "fromStatus": event.from_status.value,
                "toStatus": event.to_status.value,
                "billingAmount": _amount(event.billing_amount),
                "eventAt": event.event_at.isoformat(),
                "userId": event.user_id,
            }
            for event in slot.billing_events
        ]
    else:
        data["buriedPersons"] = [
            {"id": person.id, "name": person.name, "burialDate": _iso(person.application.ceremony_date)}
            for person in persons
        ]
    return data


def serialize_person(person: BuriedPerson) -> dict[str, object]:
    return {
        "id": person.id,
        "position": person.position,
        "name": person.name,
        "nameKana": person.name_kana,
        "relationship": person.relationship_label,
        "deathDate": _iso(person.death_date),
        "age": person.age,
        "gender": person.gender,
        "originalPlotNumber": person.original_plot_number,
        "certificateNumber": person.certificate_number,
        "burialDate": _iso(person.application.ceremony_date),
        "notes": person.notes,
    }


def serialize_application(application: BurialApplication) -> dict[str, object]:
    data: dict[str, object] = {
        "id": application.id,
        "applicationNumber": application.application_number,
        "slotId": application.slot_id,
        "contractPlotId": application.slot.contract_plot_id,
        "status": application.status.value,
        "statusLabel": translate(f"application.{application.status.value}"),
        "applicationDate": _iso(application.application_date),
        "desiredDate": _iso(application.desired_date),
        "burialType": application.burial_type.value,
        "applicantName": application.applicant_name,
        "ceremony": {
            "date": _iso(application.ceremony_date),
            "officiant": application.officiant,
            "religion": application.religion,
            "location": application.ceremony_location,
        },
        "ceremonies": [
            {
                "date": _iso(ceremony.ceremony_date),
                "officiant": ceremony.officiant,
                "religion": ceremony.religion,
                "participants": ceremony.participants,
                "location": ceremony.location,
                "memo": ceremony.memo,
            }
            for ceremony in application.ceremonies
        ],
        "documents": [
            {
                "type": document.document_type.value,
                "name": document.name,
                "issuedDate": _iso(document.issued_date),
                "memo": document.memo,
            }
            for document in application.documents
        ],
        "payment": {
            "totalFee": _amount(application.total_fee),
            "depositAmount": _amount(application.deposit_amount),
            "paymentMethod": application.payment_method,
            "paymentDueDate": _iso(application.payment_due_date),
        },
        "personCount": application.person_count,
        "persons": [serialize_person(person) for person in application.persons],
        "consolidation": serialize_consolidation(application.slot.contract_date),
        "createdAt": application.created_at.isoformat(),
        "updatedAt": application.updated_at.isoformat(),
    }
    for key, attr in APPLICATION_DETAIL_FIELDS.items():
        data[key] = getattr(application, attr)
    return data


def paginate(query, page: int, limit: int) -> tuple[list, dict[str, int]]:
    safe_page = page if page > 0 else 1
    safe_limit = max(1, min(limit, MAX_PAGE_SIZE))
    total = query.order_by(None).count()
    rows = query.offset((safe_page - 1) * safe_limit).limit(safe_limit).all()
    return rows, {
        "page": safe_page,
        "limit": safe_limit,
        "totalCount": total,
        "totalPages": max(1, (total + safe_limit - 1) // safe_limit),
    }


def list_slots(params: dict[str, str]) -> dict[str, object]:
    query = BurialSlot.query
    search = _text(params.get("search"))
    if search:
        like = f"%{search}%"
        query = query.filter(
            or_(
                BurialSlot.plot_number.ilike(like),
                BurialSlot.applicant_name.ilike(like),
                BurialSlot.applicant_name_kana.ilike(like),
                BurialSlot.contract_plot_id.ilike(like),
            )
        )
    if _text(params.get("billingStatus")):
        query = query.filter(BurialSlot.billing_status == parse_billing_status(params["billingStatus"]))
    year = _parse_optional_int(params.get("year"), "year")
    if year:
        query = query.filter(
            BurialSlot.billing_scheduled_date >= date(year, 1, 1),
            BurialSlot.billing_scheduled_date <= date(year, 12, 31),
        )

    sort_by = _text(params.get("sortBy")) or "billing_scheduled_date"
    column = SLOT_SORT_COLUMNS.get(sort_by)
    if column is None:
        raise ValueError(f"Invalid sortBy: {sort_by}")
    order = column.desc() if _text(params.get("sortOrder")).lower() == "desc" else column.asc()
    # Slots without a scheduled date go last in either direction
    query = query.order_by(column.is_(None), order, BurialSlot.id.asc())

    page = _parse_optional_int(params.get("page"), "page", minimum=1) or 1
    limit = _parse_optional_int(params.get("limit"), "limit", minimum=1) or DEFAULT_PAGE_SIZE
    rows, pagination = paginate(query, page, limit)
    return {"items": [serialize_slot(row) for row in rows], "pagination": pagination}


def create_slot(payload: dict[str, object]) -> BurialSlot:
    contract_plot_id = _text(payload.get("contractPlotId"))
    if not contract_plot_id:
        raise ValueError("Missing contractPlotId")
    if BurialSlot.query.filter_by(contract_plot_id=contract_plot_id).first():
        raise ValueError(f"A collective burial already exists for {contract_plot_id}")

    slot = BurialSlot(
        contract_plot_id=contract_plot_id,
        plot_number=_text(payload.get("plotNumber")),
        area_name=_text(payload.get("areaName")),
        applicant_name=_optional_text(payload.get("applicantName")),
        applicant_name_kana=_optional_text(payload.get("applicantNameKana")),
        contract_date=_parse_iso_date(payload.get("contractDate"), "contractDate"),
        burial_capacity=_parse_int(payload.get("burialCapacity"), "burialCapacity", minimum=1),
        current_burial_count=0,
        validity_period_years=_parse_int(payload.get("validityPeriodYears"), "validityPeriodYears", minimum=1),
        billing_status=BillingStatus.PENDING,
        billing_amount=_parse_optional_decimal(payload.get("billingAmount"), "billingAmount"),
        notes=_optional_text(payload.get("notes")),
    )
    with unit_of_work():
        db.session.add(slot)
    logger.info("Collective burial slot created for %s (capacity=%s)", contract_plot_id, slot.burial_capacity)
    return slot


def update_slot(slot_id: int, payload: dict[str, object]) -> BurialSlot:
    slot = slot_by_id(slot_id)
    capacity = _parse_optional_int(payload.get("burialCapacity"), "burialCapacity", minimum=1)
    validity = _parse_optional_int(payload.get("validityPeriodYears"), "validityPeriodYears", minimum=1)
    with unit_of_work():
        if capacity is not None or validity is not None:
            scheduler().update_slot_settings(slot.contract_plot_id, capacity, validity)
        if "billingAmount" in payload:
            slot.billing_amount = _parse_optional_decimal(payload.get("billingAmount"), "billingAmount")
        if "notes" in payload:
            slot.notes = _optional_text(payload.get("notes"))
        for key, attr in (("plotNumber", "plot_number"), ("areaName", "area_name")):
            if key in payload:
                setattr(slot, attr, _text(payload.get(key)))
    return slot


def delete_slot(slot_id: int) -> None:
    slot = slot_by_id(slot_id)
    active = [a for a in slot.applications if a.status != ApplicationStatus.CANCELLED]
    if active:
        raise ValueError("The collective burial still has active applications")
    contract_plot_id = slot.contract_plot_id
    with unit_of_work():
        for application in list(slot.applications):
            db.session.delete(application)
        db.session.delete(slot)
    logger.info("Collective burial slot %s deleted", contract_plot_id)


def change_billing_status(slot_id: int, payload: dict[str, object], user_id: int | None) -> BurialSlot:
    slot = slot_by_id(slot_id)
    new_status = parse_billing_status(_text(payload.get("billingStatus")))
    amount = _parse_optional_decimal(payload.get("billingAmount"), "billingAmount")
    with unit_of_work():
        scheduler().change_billing_status(slot.contract_plot_id, new_status, user_id, amount)
    return slot


def _completed_person_count(slot_id: int) -> int:
    total = (
        db.session.query(func.count(BuriedPerson.id))
        .join(BurialApplication, BurialApplication.id == BuriedPerson.application_id)
        .filter(BurialApplication.slot_id == slot_id)
        .filter(BurialApplication.status == ApplicationStatus.COMPLETED)
        .scalar()
    )
    return int(total or 0)


def sync_burial_count(slot_id: int) -> dict[str, object]:
    slot = slot_by_id(slot_id)
    with unit_of_work():
        state = scheduler().record_burial_count(slot.contract_plot_id, _completed_person_count(slot.id))
    return {
        "id": slot.id,
        "currentBurialCount": state.current_burial_count,
        "burialCapacity": state.burial_capacity,
        "capacityReached": state.current_burial_count >= state.burial_capacity,
        "capacityReachedDate": _iso(state.capacity_reached_date),
        "billingScheduledDate": _iso(state.billing_scheduled_date),
    }


def sync_all_burial_counts() -> tuple[list[dict[str, object]], list[tuple[int, CollectiveBurialError]]]:
    """Recount every slot from its completed applications.

    A slot whose recount violates a rule (more completed persons than its
    capacity) is reported in the second list and left unchanged; the other
    slots are still synced.
    """
    synced: list[dict[str, object]] = []
    failed: list[tuple[int, CollectiveBurialError]] = []
    slot_ids = [slot_id for (slot_id,) in db.session.query(BurialSlot.id).order_by(BurialSlot.id).all()]
    for slot_id in slot_ids:
        try:
            synced.append(sync_burial_count(slot_id))
        except CollectiveBurialError as exc:
            logger.warning("Burial count sync failed for slot %s: %s", slot_id, exc)
            failed.append((slot_id, exc))
    return synced, failed


def yearly_stats() -> list[dict[str, int]]:
    stats: dict[int, dict[str, int]] = {}
    rows = BurialSlot.query.filter(BurialSlot.billing_scheduled_date.isnot(None)).all()
    for slot in rows:
        year = slot.billing_scheduled_date.year
        entry = stats.setdefault(
            year,
            {"year": year, "count": 0, "pendingCount": 0, "billedCount": 0, "paidCount": 0},
        )
        entry["count"] += 1
        entry[f"{slot.billing_status.value}Count"] += 1
    return [stats[year] for year in sorted(stats)]


def list_applications(filters: dict[str, str]) -> list[BurialApplication]:
    query = BurialApplication.query.options(joinedload(BurialApplication.persons), joinedload(BurialApplication.slot))
    status_raw = _text(filters.get("status")).lower()
    if status_raw:
        try:
            query = query.filter(BurialApplication.status == ApplicationStatus(status_raw))
        except ValueError as exc:
            raise InvalidApplication(f"Invalid application status: {status_raw}") from exc
    slot_id = _parse_optional_int(filters.get("slotId"), "slotId")
    if slot_id:
        query = query.filter(BurialApplication.slot_id == slot_id)
    return query.order_by(BurialApplication.application_date.desc(), BurialApplication.id.desc()).all()


def _person_draft(index: int, raw: object) -> PersonDraft:
    if not isinstance(raw, dict):
        raise InvalidApplication(f"Person {index} is malformed")
    gender = _optional_text(raw.get("gender"))
    if gender and gender not in {"male", "female", "not_answered"}:
        raise InvalidApplication(f"Person {index} has an invalid gender")
    return PersonDraft(
        name=_text(raw.get("name")),
        name_kana=_text(raw.get("nameKana")),
        relationship=_text(raw.get("relationship")),
        death_date=_parse_optional_iso_date(raw.get("deathDate"), f"persons[{index}].deathDate"),
        age=_parse_optional_int(raw.get("age"), f"persons[{index}].age", minimum=0),
        gender=gender,
        original_plot_number=_optional_text(raw.get("originalPlotNumber")),
        certificate_number=_optional_text(raw.get("certificateNumber")),
        notes=_optional_text(raw.get("memo") or raw.get("notes")),
    )


def _ceremony_draft(index: int, raw: object) -> CeremonyDraft:
    if not isinstance(raw, dict):
        raise InvalidApplication(f"Ceremony {index} is malformed")
    return CeremonyDraft(
        ceremony_date=_parse_optional_iso_date(raw.get("date"), f"ceremonies[{index}].date"),
        officiant=_optional_text(raw.get("officiant")),
        religion=_optional_text(raw.get("religion")),
        participants=_parse_optional_int(raw.get("participants"), f"ceremonies[{index}].participants", minimum=0),
        location=_optional_text(raw.get("location")),
        memo=_optional_text(raw.get("memo")),
    )


def _document_draft(index: int, raw: object) -> DocumentDraft:
    if not isinstance(raw, dict):
        raise InvalidApplication(f"Document {index} is malformed")
    name = _text(raw.get("name"))
    if not name:
        raise InvalidApplication(f"Document {index} needs a name")
    type_raw = _text(raw.get("type")).lower() or DocumentType.OTHER.value
    try:
        document_type = DocumentType(type_raw)
    except ValueError as exc:
        raise InvalidApplication(f"Document {index} has an invalid type: {type_raw}") from exc
    return DocumentDraft(
        name=name,
        document_type=document_type,
        issued_date=_parse_optional_iso_date(raw.get("issuedDate"), f"documents[{index}].issuedDate"),
        memo=_optional_text(raw.get("memo")),
    )


def _list_field(payload: dict[str, object], key: str) -> list:
    value = payload.get(key) or []
    if not isinstance(value, list):
        raise InvalidApplication(f"{key} must be a list")
    return value


def _application_draft(payload: dict[str, object], user_id: int | None) -> ApplicationDraft:
    slot_id = _parse_optional_int(payload.get("slotId"), "slotId")
    contract_plot_id = _text(payload.get("contractPlotId"))
    if slot_id:
        contract_plot_id = slot_by_id(slot_id).contract_plot_id
    if not contract_plot_id:
        raise InvalidApplication("Missing slotId or contractPlotId")

    burial_type_raw = _text(payload.get("burialType")).lower() or BurialType.FAMILY.value
    try:
        burial_type = BurialType(burial_type_raw)
    except ValueError as exc:
        raise InvalidApplication(f"Invalid burial type: {burial_type_raw}") from exc

    persons_raw = _list_field(payload, "persons")
    ceremonies_raw = _list_field(payload, "ceremonies")
    documents_raw = _list_field(payload, "documents")

    details: dict[str, object] = {}
    for key, attr in APPLICATION_DETAIL_FIELDS.items():
        value = _optional_text(payload.get(key))
        details[attr] = "" if value is None and attr in NON_NULL_DETAIL_FIELDS else value
    details["total_fee"] = _parse_optional_decimal(payload.get("totalFee"), "totalFee")
    details["deposit_amount"] = _parse_optional_decimal(payload.get("depositAmount"), "depositAmount")
    details["payment_due_date"] = _parse_optional_iso_date(payload.get("paymentDueDate"), "paymentDueDate")

    return ApplicationDraft(
        contract_plot_id=contract_plot_id,
        applicant_name=_text(payload.get("applicantName")),
        persons=tuple(_person_draft(index, raw) for index, raw in enumerate(persons_raw, start=1)),
        application_date=_parse_optional_iso_date(payload.get("applicationDate"), "applicationDate") or today(),
        desired_date=_parse_optional_iso_date(payload.get("desiredDate"), "desiredDate"),
        burial_type=burial_type,
        created_by_user_id=user_id,
        ceremonies=tuple(_ceremony_draft(index, raw) for index, raw in enumerate(ceremonies_raw, start=1)),
        documents=tuple(_document_draft(index, raw) for index, raw in enumerate(documents_raw, start=1)),
        details=details,
    )


def _is_confirmed(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return _text(value).lower() in {"1", "true", "yes", "on"}


def submit_application(payload: dict[str, object], user_id: int | None) -> tuple[SubmissionOutcome, BurialApplication | None]:
    draft = _application_draft(payload, user_id)
    with unit_of_work():
        outcome = scheduler().submit(
            draft,
            confirmed=_is_confirmed(payload.get("confirmed")),
            commit=db.session.commit,
        )
    application = application_by_id(outcome.application_id) if outcome.committed else None
    return outcome, application


def schedule_application(application_id: int, payload: dict[str, object]) -> BurialApplication:
    ceremony_date = _parse_iso_date(payload.get("ceremonyDate"), "ceremonyDate")
    ceremony = CeremonyDraft(
        ceremony_date=ceremony_date,
        officiant=_optional_text(payload.get("officiant")),
        religion=_optional_text(payload.get("religion")),
        participants=_parse_optional_int(payload.get("participants"), "participants", minimum=0),
        location=_optional_text(payload.get("location")),
        memo=_optional_text(payload.get("memo")),
    )
    with unit_of_work():
        scheduler().schedule(
            application_id,
            ceremony_date,
            officiant=ceremony.officiant,
            religion=ceremony.religion,
            ceremony_location=ceremony.location,
        )
        application = application_by_id(application_id)
        # Each scheduling is kept as a ceremony record
        application.ceremonies.append(
            BurialCeremony(
                position=len(application.ceremonies) + 1,
                ceremony_date=ceremony.ceremony_date,
                officiant=ceremony.officiant,
                religion=ceremony.religion,
                participants=ceremony.participants,
                location=ceremony.location,
                memo=ceremony.memo,
            )
        )
    return application_by_id(application_id)


def complete_application(application_id: int) -> BurialApplication:
    with unit_of_work():
        scheduler().complete(application_id)
    return application_by_id(application_id)


def cancel_application(application_id: int) -> BurialApplication:
    with unit_of_work():
        scheduler().cancel(application_id)
    return application_by_id(application_id)


def capacity_summary() -> dict[str, object]:
    policy = capacity_policy()
    current = SqlApplicationStore().load_non_cancelled_aggregate_count()
    status = capacity_status(current, policy.max_total_capacity, policy)
    return {
        "currentTotal": current,
        "maxTotalCapacity": policy.max_total_capacity,
        "maxPersonsPerApplication": policy.max_persons_per_application,
        "remaining": remaining_capacity(current, policy.max_total_capacity),
        "percentage": capacity_percentage(current, policy.max_total_capacity),
        "status": status.value,
        "statusLabel": translate(f"capacity.{status.value}"),
        "warningThresholdPct": policy.warning_threshold_pct,
        "criticalThresholdPct": policy.critical_threshold_pct,
    }


def consolidation_timeline(filters: dict[str, str]) -> list[dict[str, object]]:
    query = BurialSlot.query
    year_from = _parse_optional_int(filters.get("contractYearFrom"), "contractYearFrom")
    year_to = _parse_optional_int(filters.get("contractYearTo"), "contractYearTo")
    if year_from:
        query = query.filter(BurialSlot.contract_date >= date(year_from, 1, 1))
    if year_to:
        query = query.filter(BurialSlot.contract_date <= date(year_to, 12, 31))
    slots = query.order_by(BurialSlot.contract_date.asc(), BurialSlot.id.asc()).all()

    groups = group_by_target_year(
        slots,
        contract_date_of=lambda slot: slot.contract_date,
        count_of=lambda slot: slot.current_burial_count,
    )
    target_year = _parse_optional_int(filters.get("year"), "year")
    return [
        {
            "year": group.year,
            "totalCount": group.total_count,
            "records": [serialize_slot(slot) for slot in group.records],
        }
        for group in groups
        if target_year is None or group.year == target_year
    ]
