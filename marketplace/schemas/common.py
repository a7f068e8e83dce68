"""
Shared Pydantic schemas for API request/response validation.

Request bodies reused by both order and remittance endpoints live here,
together with the error envelope every error handler renders.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorBody(BaseModel):
    """Error payload with a stable machine-readable code."""

    code: str = Field(..., description="Stable error code")
    message: str = Field(..., description="Human-readable message")
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Envelope rendered for every failed request."""

    error: ErrorBody


class ProofRequest(BaseModel):
    """Reference to an uploaded proof document."""

    model_config = ConfigDict(str_strip_whitespace=True)

    proof_ref: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Storage reference of the proof document",
    )


class ReasonRequest(BaseModel):
    """Mandatory reason, e.g. for payment rejection."""

    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str = Field(..., min_length=1, max_length=1000)


class OptionalReasonRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reason: Optional[str] = Field(None, max_length=1000)


class NotesRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    notes: Optional[str] = Field(None, max_length=2000)
