"""Typed rule violations raised by the collective-burial scheduler.

Every error carries a stable ``code`` so the HTTP layer can answer with a
machine-readable payload. They derive from ``ValueError`` because the rest of
the code base reports business-rule violations that way.
"""
from __future__ import annotations


class CollectiveBurialError(ValueError):
    code = "COLLECTIVE_BURIAL_ERROR"
    http_status = 422


class InvalidCount(CollectiveBurialError):
    code = "INVALID_COUNT"

    def __init__(self, count: int, capacity: int) -> None:
        self.count = count
        self.capacity = capacity
        super().__init__(f"Burial count {count} outside [0, {capacity}]")


class NotReady(CollectiveBurialError):
    code = "NOT_READY"

    def __init__(self, contract_plot_id: str) -> None:
        self.contract_plot_id = contract_plot_id
        super().__init__(f"Slot {contract_plot_id} has not reached capacity yet; billing is not due")


class InvalidTransition(CollectiveBurialError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Transition {current} -> {requested} is not allowed")


class InvalidApplication(CollectiveBurialError):
    code = "INVALID_APPLICATION"


class SlotNotFound(CollectiveBurialError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, reference: object) -> None:
        self.reference = reference
        super().__init__(f"Collective burial slot {reference} not found")


class ApplicationNotFound(CollectiveBurialError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, reference: object) -> None:
        self.reference = reference
        super().__init__(f"Collective burial application {reference} not found")
