from typing import Any, Dict, Optional

from shared.models_db import RFQStatus


class RFQError(Exception):
    """Base for every failure the RFQ core reports to its callers."""

    kind = "rfq_error"

    def __init__(self, detail: str, rfq_id: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.rfq_id = rfq_id

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "rfqId": self.rfq_id, "detail": self.detail}


class RFQValidationError(RFQError):
    kind = "validation_error"


class NotFoundError(RFQError):
    kind = "not_found"


class ForbiddenError(RFQError):
    kind = "forbidden"


class ConflictError(RFQError):
    """A conditional update lost the race; retry with refreshed state."""
    kind = "conflict"


class InvalidTransitionError(RFQError):
    kind = "invalid_transition"

    def __init__(self, rfq_id: Optional[str], current: RFQStatus, requested: RFQStatus, reason: str):
        super().__init__(
            f"Cannot move RFQ from {current.value} to {requested.value}: {reason}",
            rfq_id=rfq_id,
        )
        self.current = current
        self.requested = requested
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"current": self.current.value, "requested": self.requested.value, "reason": self.reason})
        return data
