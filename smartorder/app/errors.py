"""Error taxonomy for the ordering core.

Every error carries a stable ``code`` plus the offending entity, its id and
its current state so the calling screen can explain the failure without
re-reading anything.
"""

from __future__ import annotations

from typing import Any


class PosError(Exception):
    """Base class for all errors surfaced to callers."""

    code = "POS_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        entity_id: str | None = None,
        state: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id
        self.state = state
        self.hint = hint

    def details(self) -> dict[str, Any]:
        data = {"entity": self.entity, "id": self.entity_id, "state": self.state}
        return {k: v for k, v in data.items() if v is not None}


class ValidationError(PosError):
    """Malformed input such as a missing id or a non-positive quantity."""

    code = "VALIDATION_ERROR"
    status_code = 422


class NotFound(PosError):
    """A referenced table, order, menu item or payment does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id!r} not found", entity=entity, entity_id=entity_id)


class InvalidState(PosError):
    """The operation is not permitted in the entity's current lifecycle state."""

    code = "INVALID_STATE"
    status_code = 409


class InvalidTransition(InvalidState):
    """A status change that the order state machine does not allow."""

    code = "INVALID_TRANSITION"

    def __init__(self, order_id: str, src: str, dst: str) -> None:
        super().__init__(
            f"cannot transition from {src!r} to {dst!r}",
            entity="order",
            entity_id=order_id,
            state=src,
        )
        self.target = dst

    def details(self) -> dict[str, Any]:
        data = super().details()
        data["target"] = self.target
        return data


class ConcurrentUpdate(InvalidState):
    """An update kept losing races against other writers of the same document."""

    code = "CONCURRENT_UPDATE"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity} {entity_id!r} is being changed elsewhere",
            entity=entity,
            entity_id=entity_id,
            state="concurrent_update",
            hint="reload and retry",
        )


class GatewayError(PosError):
    """The payment provider failed or answered with something unusable."""

    code = "GATEWAY_ERROR"
    status_code = 502

    def __init__(self, message: str, *, gateway_code: str | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.gateway_code = gateway_code

    def details(self) -> dict[str, Any]:
        data = super().details()
        if self.gateway_code is not None:
            data["gateway_code"] = self.gateway_code
        return data


class ConsistencyWarning(UserWarning):
    """Table and order documents were observed disagreeing.

    Logged, never raised. The next recomputation repairs the table.
    """

    def __init__(self, table_id: str, stored, computed, field: str = "bill_total") -> None:
        super().__init__(
            f"table {table_id!r} {field} diverged: stored={stored} computed={computed}"
        )
        self.table_id = table_id
        self.stored = stored
        self.computed = computed
        self.field = field


__all__ = [
    "PosError",
    "ValidationError",
    "NotFound",
    "InvalidState",
    "InvalidTransition",
    "ConcurrentUpdate",
    "GatewayError",
    "ConsistencyWarning",
]
