# =============================================================================
# Closet Tagger VLM - Shared API Schemas
# =============================================================================
# Pydantic models defining the data contracts between the tagging client and
# the server.  These schemas are used for request/response validation and
# serialization across the HTTP API boundary.
#
# A tag request is a multipart image upload; the response always carries a
# status plus, for failures and "no clothing" answers, a one-shot alert the
# client should show to the user.  Cancellation never carries an alert.
# =============================================================================

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AlertPayload(BaseModel):
    """
    Dismissible message for the user.

    Attributes:
        kind:    "Error" or "Warning".
        message: Short human-readable text.
    """

    kind: str
    message: str


class ClosetItemResponse(BaseModel):
    """
    A tagged clothing item held in the server's in-memory closet.

    Attributes:
        id:         Unique item identifier (uuid4 hex).
        tag:        Normalized clothing tag (user-editable).
        width:      Width of the stored photo in pixels.
        height:     Height of the stored photo in pixels.
        created_at: ISO 8601 timestamp of when the item was added.
    """

    id: str
    tag: str
    width: int
    height: int
    created_at: str


class TagResponse(BaseModel):
    """
    Outcome of a tag request.

    Attributes:
        status:             "tagged", "no_clothing", "busy", "failed" or "cancelled".
        tag:                The normalized tag when status is "tagged".
        item:               The closet item created for a "tagged" outcome.
        alert:              Alert to show once, if any.
        processing_time_ms: Wall-clock time spent in the tagging service.
    """

    status: str
    tag: Optional[str] = None
    item: Optional[ClosetItemResponse] = None
    alert: Optional[AlertPayload] = None
    processing_time_ms: float = 0.0


class ClosetListResponse(BaseModel):
    items: List[ClosetItemResponse]
    total_count: int


class RenameItemRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tag: str = Field(..., min_length=1, max_length=100, description="New tag text")


class ModelStateResponse(BaseModel):
    """
    Result of a model warm-up or reset.

    Attributes:
        model_loaded: Whether the model is resident after the call.
        load_seconds: Duration of the last model load, if any.
        alert:        Error alert when the warm-up failed.
    """

    model_loaded: bool
    load_seconds: Optional[float] = None
    alert: Optional[AlertPayload] = None


class HealthResponse(BaseModel):
    status: str
    model_loaded: bool
    is_processing: bool
    uptime_seconds: float


class CancelResponse(BaseModel):
    cancelled: bool
