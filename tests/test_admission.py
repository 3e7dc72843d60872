from __future__ import annotations

import pytest

from app.collective_burial.capacity import (
    AdmissionDecision,
    CapacityPolicy,
    CapacityStatus,
    capacity_percentage,
    capacity_status,
    evaluate_admission,
    remaining_capacity,
)
from app.collective_burial.errors import InvalidApplication

POLICY = CapacityPolicy(
    max_persons_per_application=8,
    max_total_capacity=100,
    warning_threshold_pct=80,
    critical_threshold_pct=95,
)


def test_critical_batch_warns():
    result = evaluate_admission(3, 94, POLICY)
    assert result.decision == AdmissionDecision.WARN
    assert result.status == CapacityStatus.CRITICAL
    assert result.future_total == 97
    assert result.utilization_pct == pytest.approx(97.0)
    assert result.needs_confirmation


@pytest.mark.parametrize("current_total", [0, 50, 99, 100, 150])
def test_per_application_limit_rejects_before_aggregate(current_total):
    result = evaluate_admission(9, current_total, POLICY)
    assert result.rejected
    assert result.reason == "per-application limit"
    assert result.status is None
    assert result.future_total is None


def test_batch_at_limit_is_evaluated():
    result = evaluate_admission(8, 0, POLICY)
    assert result.accepted
    assert result.status == CapacityStatus.SAFE


@pytest.mark.parametrize(
    ("current", "decision", "status"),
    [
        (0, AdmissionDecision.ACCEPTED, CapacityStatus.SAFE),
        (78, AdmissionDecision.ACCEPTED, CapacityStatus.SAFE),
        (79, AdmissionDecision.WARN, CapacityStatus.WARNING),
        (93, AdmissionDecision.WARN, CapacityStatus.WARNING),
        (94, AdmissionDecision.WARN, CapacityStatus.CRITICAL),
        (99, AdmissionDecision.WARN, CapacityStatus.CRITICAL),
        (100, AdmissionDecision.REJECTED, CapacityStatus.FULL),
    ],
)
def test_thresholds_for_single_person(current, decision, status):
    result = evaluate_admission(1, current, POLICY)
    assert result.decision == decision
    assert result.status == status


def test_filling_exactly_to_capacity_is_not_rejected():
    result = evaluate_admission(2, 98, POLICY)
    assert result.future_total == 100
    assert result.decision == AdmissionDecision.WARN
    assert result.status == CapacityStatus.CRITICAL


def test_one_over_capacity_is_rejected():
    result = evaluate_admission(3, 98, POLICY)
    assert result.rejected
    assert result.status == CapacityStatus.FULL
    assert result.reason == "total capacity"


def test_empty_batch_is_invalid():
    with pytest.raises(InvalidApplication):
        evaluate_admission(0, 10, POLICY)


def test_result_payload_uses_camel_case():
    payload = evaluate_admission(3, 94, POLICY).to_dict()
    assert payload == {
        "decision": "warn",
        "status": "critical",
        "reason": None,
        "batchSize": 3,
        "futureTotal": 97,
        "utilizationPct": pytest.approx(97.0),
    }


def test_policy_validation():
    with pytest.raises(ValueError):
        CapacityPolicy(max_persons_per_application=0)
    with pytest.raises(ValueError):
        CapacityPolicy(warning_threshold_pct=96, critical_threshold_pct=95)


def test_policy_from_config_defaults():
    policy = CapacityPolicy.from_config({})
    assert policy == CapacityPolicy(10, 500, 80.0, 95.0)


def test_capacity_helpers():
    assert capacity_status(500, 500, CapacityPolicy()) == CapacityStatus.FULL
    assert capacity_status(480, 500, CapacityPolicy()) == CapacityStatus.CRITICAL
    assert capacity_status(400, 500, CapacityPolicy()) == CapacityStatus.WARNING
    assert capacity_status(5, 500, CapacityPolicy()) == CapacityStatus.SAFE
    assert remaining_capacity(510, 500) == 0
    assert remaining_capacity(5, 500) == 495
    assert capacity_percentage(5, 500) == 1
    assert capacity_percentage(600, 500) == 100
