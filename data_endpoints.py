"""
Read endpoints for the public site and the contact form.

- GET  /api/buses      active buses with their route
- GET  /api/schedules  active schedules with their route, by departure time
- POST /api/contact    store a contact form submission
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

from dependencies import get_context, get_store
from middleware.rate_limiter import api_rate_limit
from store.base import BusStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["data"])

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ContactMessageRequest(BaseModel):
    """Contact form submission."""
    name: str
    email: str
    phone: Optional[str] = None
    message: str

    @field_validator("name", "message")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("cannot be empty")
        return v

    @field_validator("name")
    @classmethod
    def validate_name_length(cls, v: str) -> str:
        if len(v) > 200:
            raise ValueError("name cannot exceed 200 characters")
        return v

    @field_validator("message")
    @classmethod
    def validate_message_length(cls, v: str) -> str:
        if len(v) > 5000:
            raise ValueError("message cannot exceed 5000 characters")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("email must be a valid address")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if len(v) > 30:
            raise ValueError("phone cannot exceed 30 characters")
        return v


@router.get("/buses")
@api_rate_limit()
async def list_buses(request: Request, store: BusStore = Depends(get_store)):
    """Active buses joined with route number, name and description."""
    buses = await store.list_active_buses_with_route()
    return {
        "success": True,
        "data": [bus.model_dump(mode="json") for bus in buses],
    }


@router.get("/schedules")
@api_rate_limit()
async def list_schedules(request: Request, store: BusStore = Depends(get_store)):
    """Active schedules joined with their route, ordered by departure time."""
    schedules = await store.list_active_schedules_with_route()
    return {
        "success": True,
        "data": [schedule.model_dump(mode="json") for schedule in schedules],
    }


@router.post("/contact", status_code=201)
@api_rate_limit()
async def submit_contact_message(
    request: Request,
    body: ContactMessageRequest,
    store: BusStore = Depends(get_store),
):
    """
    Store a contact form submission.

    Returns:
        201 with the stored message (status ``new``)
    """
    record = await store.create_contact_message(
        name=body.name,
        email=body.email,
        message=body.message,
        phone=body.phone,
    )

    telemetry = get_context(request).telemetry
    if telemetry:
        telemetry.log_audit_event(
            event_type="contact_message_received",
            actor=None,
            resource_type="contact_message",
            resource_id=record.id,
            action="create",
        )

    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "message": "Message sent successfully",
            "data": record.model_dump(mode="json"),
        },
    )
