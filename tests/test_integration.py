from __future__ import annotations

import threading
from datetime import date

from sqlalchemy import func

from app.collective_burial.services import submit_application
from app.core.extensions import db
from app.core.models import (
    ApplicationStatus,
    BillingStatus,
    BillingStatusEvent,
    BurialApplication,
    BurialDocument,
    BurialSlot,
    BuriedPerson,
    DocumentType,
)


def _slot(contract_plot_id: str) -> BurialSlot:
    db.session.expire_all()
    return BurialSlot.query.filter_by(contract_plot_id=contract_plot_id).one()


def _persons(count: int) -> list[dict[str, object]]:
    return [
        {"name": f"故人 {index}", "nameKana": "コジン", "relationship": "祖父", "deathDate": "2023-01-10"}
        for index in range(1, count + 1)
    ]


def test_api_requires_login(client):
    response = client.get("/api/collective-burials")
    assert response.status_code == 401
    assert response.get_json()["error"]["code"] == "UNAUTHORIZED"


def test_login_rejects_bad_password(client):
    response = client.post("/auth/login", json={"email": "admin@reien.local", "password": "nope"})
    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_list_slots_sorted_and_filtered(app, client, login_admin):
    login_admin()
    response = client.get("/api/collective-burials")
    assert response.status_code == 200
    payload = response.get_json()["data"]
    assert [item["contractPlotId"] for item in payload["items"]] == ["cp-003", "cp-002", "cp-001"]
    assert payload["pagination"]["totalCount"] == 3

    billed = client.get("/api/collective-burials?billingStatus=billed").get_json()["data"]
    assert [item["contractPlotId"] for item in billed["items"]] == ["cp-003"]

    by_year = client.get("/api/collective-burials?year=2036").get_json()["data"]
    assert [item["contractPlotId"] for item in by_year["items"]] == ["cp-002"]

    search = client.get("/api/collective-burials?search=B-015").get_json()["data"]
    assert search["items"][0]["plotNumber"] == "B-015"

    bad_sort = client.get("/api/collective-burials?sortBy=name")
    assert bad_sort.status_code == 422
    assert bad_sort.get_json()["error"]["code"] == "VALIDATION_ERROR"


def test_slot_detail_includes_consolidation_and_persons(app, client, login_admin):
    login_admin()
    slot_id = _slot("cp-001").id
    response = client.get(f"/api/collective-burials/{slot_id}")
    data = response.get_json()["data"]
    assert data["consolidation"]["periodType"] == "7year"
    assert data["consolidation"]["collectiveBurialYear"] == 2020
    assert len(data["buriedPersons"]) == 2
    assert data["billingHistory"] == []

    missing = client.get("/api/collective-burials/9999")
    assert missing.status_code == 404
    assert missing.get_json()["error"]["code"] == "NOT_FOUND"


def test_create_update_and_delete_slot(app, client, login_admin):
    login_admin()
    created = client.post(
        "/api/collective-burials",
        json={
            "contractPlotId": "cp-900",
            "plotNumber": "D-001",
            "areaName": "4期",
            "contractDate": "2022-05-01",
            "burialCapacity": 2,
            "validityPeriodYears": 13,
        },
    )
    assert created.status_code == 201
    data = created.get_json()["data"]
    assert data["consolidation"]["periodType"] == "13year"
    assert data["consolidation"]["collectiveBurialYear"] == 2035
    assert data["currentBurialCount"] == 0

    duplicate = client.post(
        "/api/collective-burials",
        json={"contractPlotId": "cp-900", "contractDate": "2022-05-01", "burialCapacity": 2, "validityPeriodYears": 13},
    )
    assert duplicate.status_code == 422

    updated = client.put(f"/api/collective-burials/{data['id']}", json={"validityPeriodYears": 33, "notes": "見直し"})
    assert updated.status_code == 200
    assert updated.get_json()["data"]["validityPeriodYears"] == 33
    assert updated.get_json()["data"]["notes"] == "見直し"

    deleted = client.delete(f"/api/collective-burials/{data['id']}")
    assert deleted.status_code == 200
    assert BurialSlot.query.filter_by(contract_plot_id="cp-900").first() is None


def test_capacity_cannot_drop_below_count(app, client, login_admin):
    login_admin()
    slot_id = _slot("cp-001").id
    response = client.put(f"/api/collective-burials/{slot_id}", json={"burialCapacity": 1})
    assert response.status_code == 422
    assert response.get_json()["error"]["code"] == "INVALID_COUNT"
    assert _slot("cp-001").burial_capacity == 10


def test_slot_with_active_applications_cannot_be_deleted(app, client, login_admin):
    login_admin()
    response = client.delete(f"/api/collective-burials/{_slot('cp-001').id}")
    assert response.status_code == 422


def test_submit_and_complete_application(app, client, login_admin):
    login_admin()
    slot_id = _slot("cp-001").id

    capacity = client.get("/api/collective-burial-applications/capacity").get_json()["data"]
    assert capacity["currentTotal"] == 5
    assert capacity["status"] == "safe"
    assert capacity["remaining"] == 495

    response = client.post(
        "/api/collective-burial-applications",
        json={"slotId": slot_id, "applicantName": "山田 太郎", "persons": _persons(2)},
    )
    assert response.status_code == 201
    body = response.get_json()["data"]
    assert body["committed"] is True
    assert body["admission"]["decision"] == "accepted"
    application = body["application"]
    assert application["applicationNumber"] == "CBA-0004"
    assert application["status"] == "pending"
    assert application["applicationDate"] == "2024-06-01"
    assert application["personCount"] == 2
    assert [person["position"] for person in application["persons"]] == [1, 2]

    capacity = client.get("/api/collective-burial-applications/capacity").get_json()["data"]
    assert capacity["currentTotal"] == 7

    scheduled = client.post(
        f"/api/collective-burial-applications/{application['id']}/schedule",
        json={"ceremonyDate": "2024-07-01", "officiant": "住職"},
    )
    assert scheduled.status_code == 200
    assert scheduled.get_json()["data"]["status"] == "scheduled"
    assert scheduled.get_json()["data"]["ceremony"]["date"] == "2024-07-01"

    completed = client.post(f"/api/collective-burial-applications/{application['id']}/complete")
    assert completed.status_code == 200
    assert completed.get_json()["data"]["status"] == "completed"
    assert _slot("cp-001").current_burial_count == 4

    again = client.post(f"/api/collective-burial-applications/{application['id']}/complete")
    assert again.status_code == 200
    assert _slot("cp-001").current_burial_count == 4

    cancel = client.post(f"/api/collective-burial-applications/{application['id']}/cancel")
    assert cancel.status_code == 422
    assert cancel.get_json()["error"]["code"] == "INVALID_TRANSITION"

    listed = client.get(f"/api/collective-burial-applications?status=completed&slotId={slot_id}").get_json()["data"]
    assert [row["applicationNumber"] for row in listed] == ["CBA-0004", "CBA-0001"]


def test_submit_rejections_and_warnings(app, client, login_admin):
    login_admin()
    slot_id = _slot("cp-001").id

    too_many = client.post(
        "/api/collective-burial-applications",
        json={"slotId": slot_id, "applicantName": "山田 太郎", "persons": _persons(11)},
    )
    assert too_many.status_code == 422
    assert too_many.get_json()["data"]["admission"]["reason"] == "per-application limit"

    empty = client.post(
        "/api/collective-burial-applications",
        json={"slotId": slot_id, "applicantName": "山田 太郎", "persons": []},
    )
    assert empty.status_code == 422
    assert empty.get_json()["error"]["code"] == "INVALID_APPLICATION"

    app.config["COLLECTIVE_BURIAL_MAX_TOTAL_CAPACITY"] = 6
    warn = client.post(
        "/api/collective-burial-applications",
        json={"slotId": slot_id, "applicantName": "山田 太郎", "persons": _persons(1)},
    )
    assert warn.status_code == 409
    assert warn.get_json()["data"]["admission"]["status"] == "critical"
    assert BurialApplication.query.count() == 3

    confirmed = client.post(
        "/api/collective-burial-applications",
        json={"slotId": slot_id, "applicantName": "山田 太郎", "persons": _persons(1), "confirmed": True},
    )
    assert confirmed.status_code == 201

    full = client.post(
        "/api/collective-burial-applications",
        json={"slotId": slot_id, "applicantName": "山田 太郎", "persons": _persons(1), "confirmed": True},
    )
    assert full.status_code == 422
    assert full.get_json()["data"]["admission"]["status"] == "full"


def test_cancelled_application_releases_capacity(app, client, login_admin):
    login_admin()
    slot_id = _slot("cp-001").id
    response = client.post(
        "/api/collective-burial-applications",
        json={"slotId": slot_id, "applicantName": "山田 太郎", "persons": _persons(3)},
    )
    application_id = response.get_json()["data"]["application"]["id"]
    cancelled = client.post(f"/api/collective-burial-applications/{application_id}/cancel")
    assert cancelled.get_json()["data"]["status"] == "cancelled"

    capacity = client.get("/api/collective-burial-applications/capacity").get_json()["data"]
    assert capacity["currentTotal"] == 5
    assert db.session.get(BurialApplication, application_id).status == ApplicationStatus.CANCELLED


def test_billing_status_flow(app, client, login_admin):
    login_admin()
    not_ready = client.put(
        f"/api/collective-burials/{_slot('cp-001').id}/billing-status",
        json={"billingStatus": "billed"},
    )
    assert not_ready.status_code == 422
    assert not_ready.get_json()["error"]["code"] == "NOT_READY"

    slot_id = _slot("cp-002").id
    billed = client.put(
        f"/api/collective-burials/{slot_id}/billing-status",
        json={"billingStatus": "billed", "billingAmount": "260,000"},
    )
    assert billed.status_code == 200
    assert billed.get_json()["data"]["billingStatus"] == "billed"
    assert billed.get_json()["data"]["billingAmount"] == 260000.0

    reverse = client.put(f"/api/collective-burials/{slot_id}/billing-status", json={"billingStatus": "pending"})
    assert reverse.status_code == 422
    assert reverse.get_json()["error"]["code"] == "INVALID_TRANSITION"

    paid = client.put(f"/api/collective-burials/{slot_id}/billing-status", json={"billingStatus": "paid"})
    assert paid.status_code == 200

    slot = _slot("cp-002")
    assert slot.billing_status == BillingStatus.PAID
    events = BillingStatusEvent.query.filter_by(slot_id=slot_id).order_by(BillingStatusEvent.id).all()
    assert [(event.from_status, event.to_status) for event in events] == [
        (BillingStatus.PENDING, BillingStatus.BILLED),
        (BillingStatus.BILLED, BillingStatus.PAID),
    ]


def test_billing_status_requires_admin(app, client, login_operator):
    login_operator()
    response = client.put(
        f"/api/collective-burials/{_slot('cp-002').id}/billing-status",
        json={"billingStatus": "billed"},
    )
    assert response.status_code == 403
    assert _slot("cp-002").billing_status == BillingStatus.PENDING


def test_sync_count_and_yearly_stats(app, client, login_admin):
    login_admin()
    slot_id = _slot("cp-001").id
    synced = client.post(f"/api/collective-burials/{slot_id}/sync-count")
    assert synced.status_code == 200
    assert synced.get_json()["data"]["currentBurialCount"] == 2
    assert synced.get_json()["data"]["capacityReached"] is False

    stats = client.get("/api/collective-burials/stats/yearly").get_json()["data"]
    assert stats == [
        {"year": 2027, "count": 1, "pendingCount": 0, "billedCount": 1, "paidCount": 0},
        {"year": 2036, "count": 1, "pendingCount": 1, "billedCount": 0, "paidCount": 0},
    ]


def test_consolidation_timeline(app, client, login_admin):
    login_admin()
    timeline = client.get("/api/consolidation/timeline").get_json()["data"]
    assert [(group["year"], group["totalCount"]) for group in timeline] == [(2020, 2), (2021, 1), (2034, 2)]

    only = client.get("/api/consolidation/timeline?year=2034").get_json()["data"]
    assert [record["contractPlotId"] for record in only[0]["records"]] == ["cp-002"]

    ranged = client.get("/api/consolidation/timeline?contractYearFrom=2014&contractYearTo=2020").get_json()["data"]
    assert [group["year"] for group in ranged] == [2021]


def test_cli_commands(app):
    runner = app.test_cli_runner()

    schedule = runner.invoke(args=["consolidation-schedule", "--year", "2020"])
    assert schedule.exit_code == 0
    assert "2020: 1 slots, 2 persons" in schedule.output
    assert "cp-001" in schedule.output

    synced = runner.invoke(args=["sync-burial-counts"])
    assert synced.exit_code == 0
    assert "Synced 3 slots, 0 failed." in synced.output
    assert _slot("cp-002").capacity_reached_date == date(2023, 11, 1)

    seeded = runner.invoke(args=["seed-demo"])
    assert "Seed skipped" in seeded.output


def test_application_numbers_are_not_reused_after_slot_delete(app, client, login_admin):
    login_admin()
    created = client.post(
        "/api/collective-burials",
        json={"contractPlotId": "cp-901", "contractDate": "2022-05-01", "burialCapacity": 2, "validityPeriodYears": 13},
    )
    temporary_id = created.get_json()["data"]["id"]

    first = client.post(
        "/api/collective-burial-applications",
        json={"slotId": temporary_id, "applicantName": "山田 太郎", "persons": _persons(1)},
    )
    assert first.get_json()["data"]["application"]["applicationNumber"] == "CBA-0004"
    client.post(f"/api/collective-burial-applications/{first.get_json()['data']['application']['id']}/cancel")

    second = client.post(
        "/api/collective-burial-applications",
        json={"slotId": _slot("cp-001").id, "applicantName": "山田 花子", "persons": _persons(1)},
    )
    assert second.get_json()["data"]["application"]["applicationNumber"] == "CBA-0005"

    assert client.delete(f"/api/collective-burials/{temporary_id}").status_code == 200

    third = client.post(
        "/api/collective-burial-applications",
        json={"slotId": _slot("cp-001").id, "applicantName": "佐藤 一郎", "persons": _persons(1)},
    )
    assert third.status_code == 201
    assert third.get_json()["data"]["application"]["applicationNumber"] == "CBA-0006"


def test_submit_with_ceremonies_and_documents(app, client, login_admin):
    login_admin()
    slot_id = _slot("cp-001").id
    response = client.post(
        "/api/collective-burial-applications",
        json={
            "slotId": slot_id,
            "applicantName": "山田 太郎",
            "persons": _persons(1),
            "ceremonies": [
                {"date": "2024-07-01", "officiant": "住職", "religion": "浄土真宗", "participants": 12, "memo": "本堂"},
            ],
            "documents": [
                {"type": "permit", "name": "改葬許可証", "issuedDate": "2024-05-20"},
                {"name": "同意書", "memo": "親族代表"},
            ],
        },
    )
    assert response.status_code == 201
    application = response.get_json()["data"]["application"]
    assert application["ceremonies"] == [
        {
            "date": "2024-07-01",
            "officiant": "住職",
            "religion": "浄土真宗",
            "participants": 12,
            "location": None,
            "memo": "本堂",
        }
    ]
    assert application["documents"] == [
        {"type": "permit", "name": "改葬許可証", "issuedDate": "2024-05-20", "memo": None},
        {"type": "other", "name": "同意書", "issuedDate": None, "memo": "親族代表"},
    ]
    stored = BurialDocument.query.filter_by(application_id=application["id"]).order_by(BurialDocument.position).all()
    assert [document.document_type for document in stored] == [DocumentType.PERMIT, DocumentType.OTHER]

    scheduled = client.post(
        f"/api/collective-burial-applications/{application['id']}/schedule",
        json={"ceremonyDate": "2024-07-15", "officiant": "副住職", "participants": 8, "memo": "納骨堂前"},
    )
    assert scheduled.status_code == 200
    ceremonies = scheduled.get_json()["data"]["ceremonies"]
    assert [ceremony["date"] for ceremony in ceremonies] == ["2024-07-01", "2024-07-15"]
    assert ceremonies[1]["participants"] == 8
    assert ceremonies[1]["memo"] == "納骨堂前"
    assert scheduled.get_json()["data"]["ceremony"]["date"] == "2024-07-15"


def test_submit_rejects_malformed_documents_and_ceremonies(app, client, login_admin):
    login_admin()
    slot_id = _slot("cp-001").id
    base = {"slotId": slot_id, "applicantName": "山田 太郎", "persons": _persons(1)}

    bad_type = client.post(
        "/api/collective-burial-applications",
        json={**base, "documents": [{"type": "receipt", "name": "領収書"}]},
    )
    assert bad_type.status_code == 422
    assert bad_type.get_json()["error"]["code"] == "INVALID_APPLICATION"

    unnamed = client.post("/api/collective-burial-applications", json={**base, "documents": [{"type": "permit"}]})
    assert unnamed.status_code == 422

    negative = client.post(
        "/api/collective-burial-applications",
        json={**base, "ceremonies": [{"date": "2024-07-01", "participants": -1}]},
    )
    assert negative.status_code == 422
    assert negative.get_json()["error"]["code"] == "VALIDATION_ERROR"
    assert BurialApplication.query.count() == 3


def test_sync_burial_counts_reports_failing_slot_and_continues(app):
    completed = BurialApplication.query.filter_by(application_number="CBA-0003").one()
    db.session.add(BuriedPerson(application_id=completed.id, position=2, name="故人 追加"))
    db.session.commit()

    result = app.test_cli_runner().invoke(args=["sync-burial-counts"])
    assert result.exit_code == 0
    assert f"slot={_slot('cp-003').id} failed: INVALID_COUNT" in result.output
    assert f"slot={_slot('cp-001').id} count=2/10" in result.output
    assert "Synced 2 slots, 1 failed." in result.output
    assert _slot("cp-003").current_burial_count == 1


def test_concurrent_submissions_commit_within_total_capacity(file_app):
    barrier = threading.Barrier(6)
    committed: list[str] = []
    rejected: list[str] = []
    errors: list[Exception] = []

    with file_app.app_context():
        slot_id = BurialSlot.query.filter_by(contract_plot_id="cp-001").one().id

    def _submit(index: int) -> None:
        payload = {"slotId": slot_id, "applicantName": f"申請者 {index}", "persons": _persons(1), "confirmed": True}
        with file_app.app_context():
            barrier.wait()
            try:
                outcome, application = submit_application(payload, None)
            except Exception as exc:
                errors.append(exc)
                return
            if outcome.committed:
                committed.append(application.application_number)
            else:
                rejected.append(outcome.result.reason)

    threads = [threading.Thread(target=_submit, args=(index,)) for index in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert committed == ["CBA-0004"]
    assert rejected == ["total capacity"] * 5
    with file_app.app_context():
        assert BurialApplication.query.count() == 4
        total = (
            db.session.query(func.count(BuriedPerson.id))
            .join(BurialApplication, BurialApplication.id == BuriedPerson.application_id)
            .filter(BurialApplication.status != ApplicationStatus.CANCELLED)
            .scalar()
        )
        assert total == 6
