"""
Error taxonomy shared by every layer of the retention engine.

Readers and the record store raise ``StoreError``/``NotFoundError``; higher
layers let them propagate unchanged so callers can branch on the kind.
"""

from __future__ import annotations


class RetentionEngineError(Exception):
    """Base class for all engine errors."""

    kind = "engine_error"


class NotFoundError(RetentionEngineError):
    kind = "not_found"

    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ValidationError(RetentionEngineError):
    kind = "validation_error"

    def __init__(self, field: str, constraint: str) -> None:
        self.field = field
        self.constraint = constraint
        super().__init__(f"Invalid {field}: {constraint}")


class UpstreamScoringError(RetentionEngineError):
    """The external scorer failed or returned malformed output."""

    kind = "prediction_unavailable"

    def __init__(self, member_id: str, reason: str) -> None:
        self.member_id = member_id
        self.reason = reason
        super().__init__(f"Prediction unavailable for member {member_id}: {reason}")


class StoreError(RetentionEngineError):
    kind = "store_error"
