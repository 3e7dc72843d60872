from __future__ import annotations

from flask import jsonify, request
from flask_login import current_user, login_required

from app.collective_burial import collective_burial_bp
from app.collective_burial.errors import CollectiveBurialError
from app.collective_burial.services import (
    application_by_id,
    cancel_application,
    capacity_summary,
    change_billing_status,
    complete_application,
    consolidation_timeline,
    create_slot,
    delete_slot,
    list_applications,
    list_slots,
    schedule_application,
    serialize_application,
    serialize_slot,
    slot_by_id,
    submit_application,
    sync_burial_count,
    update_slot,
    yearly_stats,
)
from app.core.models import UserRole
from app.core.permissions import require_role


def _ok(data: object, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def _error(code: str, message: str, status: int):
    return jsonify({"success": False, "error": {"code": code, "message": message}}), status


def _payload() -> dict[str, object]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return {k: v for k, v in request.form.items()}


@collective_burial_bp.errorhandler(CollectiveBurialError)
def handle_rule_error(exc: CollectiveBurialError):
    return _error(exc.code, str(exc), exc.http_status)


@collective_burial_bp.errorhandler(ValueError)
def handle_validation_error(exc: ValueError):
    return _error("VALIDATION_ERROR", str(exc), 422)


@collective_burial_bp.get("/collective-burials")
@login_required
def slots_index():
    return _ok(list_slots(request.args.to_dict()))


@collective_burial_bp.post("/collective-burials")
@login_required
def slots_create():
    slot = create_slot(_payload())
    return _ok(serialize_slot(slot, detail=True), 201)


@collective_burial_bp.get("/collective-burials/stats/yearly")
@login_required
def slots_yearly_stats():
    return _ok(yearly_stats())


@collective_burial_bp.get("/collective-burials/<int:slot_id>")
@login_required
def slots_detail(slot_id: int):
    return _ok(serialize_slot(slot_by_id(slot_id), detail=True))


@collective_burial_bp.put("/collective-burials/<int:slot_id>")
@login_required
def slots_update(slot_id: int):
    slot = update_slot(slot_id, _payload())
    return _ok(serialize_slot(slot, detail=True))


@collective_burial_bp.delete("/collective-burials/<int:slot_id>")
@login_required
@require_role(UserRole.ADMIN)
def slots_delete(slot_id: int):
    delete_slot(slot_id)
    return _ok({"message": "deleted"})


@collective_burial_bp.put("/collective-burials/<int:slot_id>/billing-status")
@login_required
@require_role(UserRole.ADMIN)
def slots_billing_status(slot_id: int):
    slot = change_billing_status(slot_id, _payload(), current_user.id)
    return _ok(
        {
            "id": slot.id,
            "billingStatus": slot.billing_status.value,
            "billingAmount": float(slot.billing_amount) if slot.billing_amount is not None else None,
            "updatedAt": slot.updated_at.isoformat(),
        }
    )


@collective_burial_bp.post("/collective-burials/<int:slot_id>/sync-count")
@login_required
def slots_sync_count(slot_id: int):
    return _ok(sync_burial_count(slot_id))


@collective_burial_bp.get("/collective-burial-applications")
@login_required
def applications_index():
    rows = list_applications(request.args.to_dict())
    return _ok([serialize_application(row) for row in rows])


@collective_burial_bp.get("/collective-burial-applications/capacity")
@login_required
def applications_capacity():
    return _ok(capacity_summary())


@collective_burial_bp.post("/collective-burial-applications")
@login_required
def applications_submit():
    outcome, application = submit_application(_payload(), current_user.id)
    body: dict[str, object] = {
        "admission": outcome.result.to_dict(),
        "committed": outcome.committed,
        "application": serialize_application(application) if application else None,
    }
    if outcome.committed:
        return _ok(body, 201)
    if outcome.result.needs_confirmation:
        # Operator must resubmit with confirmed=true
        code, message, status = "CONFIRMATION_REQUIRED", outcome.result.status.value, 409
    else:
        code, message, status = "REJECTED", outcome.result.reason, 422
    return jsonify({"success": False, "data": body, "error": {"code": code, "message": message}}), status


@collective_burial_bp.get("/collective-burial-applications/<int:application_id>")
@login_required
def applications_detail(application_id: int):
    return _ok(serialize_application(application_by_id(application_id)))


@collective_burial_bp.post("/collective-burial-applications/<int:application_id>/schedule")
@login_required
def applications_schedule(application_id: int):
    return _ok(serialize_application(schedule_application(application_id, _payload())))


@collective_burial_bp.post("/collective-burial-applications/<int:application_id>/complete")
@login_required
def applications_complete(application_id: int):
    return _ok(serialize_application(complete_application(application_id)))


@collective_burial_bp.post("/collective-burial-applications/<int:application_id>/cancel")
@login_required
def applications_cancel(application_id: int):
    return _ok(serialize_application(cancel_application(application_id)))


@collective_burial_bp.get("/consolidation/timeline")
@login_required
def consolidation_timeline_index():
    return _ok(consolidation_timeline(request.args.to_dict()))
