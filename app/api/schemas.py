"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from app.models.enums import (
    TicketStatus,
    TransitionEvent,
    AuditEventKind,
    IntakeMethod
)


# Ticket schemas
class TicketCreate(BaseModel):
    project_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    due_date: Optional[date] = None
    shortened_due_reason: Optional[str] = None
    # Support/admin registering for a customer
    on_behalf_of: Optional[str] = None
    intake_method: Optional[IntakeMethod] = None
    request_date: Optional[date] = None


class TicketResponse(BaseModel):
    id: str
    title: str
    description: str
    status: TicketStatus
    requester_id: str
    created_by_id: str
    assignee_id: Optional[str]
    project_id: str
    created_at: datetime
    original_due_date: date
    due_date: date
    shortened_due_reason: Optional[str]
    intake_method: Optional[IntakeMethod]
    request_date: Optional[date]
    plan: Optional[str]
    expected_completion_date: Optional[date]
    expected_completion_delay_reason: Optional[str]
    postpone_date: Optional[date]
    postpone_reason: Optional[str]
    rejection_reason: Optional[str]
    rejection_event: Optional[TransitionEvent]
    satisfaction: Optional[int]
    completion_feedback: Optional[str]
    updated_at: datetime
    d_day: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# Transition schemas
class TransitionRequest(BaseModel):
    """
    payload keys by event:
    - REGISTER_PLAN: plan, expected_completion_date, delay_reason (optional)
    - REQUEST_POSTPONEMENT: postpone_date, reason
    - REJECT_POSTPONEMENT / REJECT_COMPLETION: reason
    - APPROVE_COMPLETION: satisfaction (1-5), feedback (optional)
    """
    event: TransitionEvent
    payload: Dict[str, Any] = Field(default_factory=dict)


# Audit schemas
class AuditEntryResponse(BaseModel):
    id: int
    ticket_id: str
    from_status: Optional[TicketStatus]
    resulting_status: TicketStatus
    event_kind: AuditEventKind
    actor_id: str
    actor_name: str
    note: str
    created_at: datetime
    label: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# Comment schemas
class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class CommentResponse(BaseModel):
    id: int
    ticket_id: str
    author_id: str
    author_name: str
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SweepResponse(BaseModel):
    transitioned: int
    ran_at: datetime


# Error response
class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Dict[str, Any] = {}


class ErrorResponse(BaseModel):
    """Response body for every refused request."""
    error: ErrorDetail


ERROR_RESPONSES = {
    403: {"model": ErrorResponse, "description": "Unauthorized transition"},
    404: {"model": ErrorResponse, "description": "Ticket not found"},
    409: {"model": ErrorResponse, "description": "Event not allowed in the current status"},
    422: {"model": ErrorResponse, "description": "Payload breaks a business rule"},
    503: {"model": ErrorResponse, "description": "Ticket store unavailable"},
}


class TicketList(BaseModel):
    items: List[TicketResponse]
    total: int
