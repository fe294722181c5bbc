from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

OrderTypeLiteral = Literal["regular", "post_construction"]

_PHONE_CHARS = set("+0123456789 ()-")


class OrderCreateRequest(BaseModel):
    order_type: OrderTypeLiteral
    client_name: str = Field(min_length=2, max_length=255)
    client_email: EmailStr | None = None
    client_phone: str = Field(min_length=3, max_length=50)
    address: str = Field(min_length=5, max_length=500)
    city: str | None = Field(None, min_length=2, max_length=120)
    scheduled_date: datetime
    notes: str | None = Field(None, max_length=5000)

    @field_validator("client_phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        value = value.strip()
        if not value or any(char not in _PHONE_CHARS for char in value):
            raise ValueError("client_phone may only contain digits, spaces, +, ( ) and -")
        return value

    @field_validator("client_name", "address")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class OrderUpdateRequest(BaseModel):
    client_name: str | None = Field(None, min_length=2, max_length=255)
    client_email: EmailStr | None = None
    client_phone: str | None = Field(None, min_length=3, max_length=50)
    address: str | None = Field(None, min_length=5, max_length=500)
    city: str | None = Field(None, max_length=120)
    scheduled_date: datetime | None = None
    notes: str | None = Field(None, max_length=5000)

    @field_validator("client_phone")
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return OrderCreateRequest.validate_phone(value)


class AssignWorkersRequest(BaseModel):
    worker_ids: list[int] = Field(min_length=1)
    responsible_worker_id: int = Field(ge=1)

    @field_validator("worker_ids")
    @classmethod
    def validate_ids(cls, value: list[int]) -> list[int]:
        if any(worker_id < 1 for worker_id in value):
            raise ValueError("worker ids must be positive integers")
        return value


class AssignAreasRequest(BaseModel):
    area_ids: list[int] = Field(min_length=1)


class StartWorkRequest(BaseModel):
    gps_start_latitude: float = Field(ge=-90, le=90)
    gps_start_longitude: float = Field(ge=-180, le=180)


class CompleteOrderRequest(BaseModel):
    gps_end_latitude: float | None = Field(None, ge=-90, le=90)
    gps_end_longitude: float | None = Field(None, ge=-180, le=180)
    signature_worker: str | None = None
    signature_client: str | None = None


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class DailyReportCreateRequest(BaseModel):
    report_date: date
    description: str
    signature_worker: str | None = None

    @field_validator("report_date", mode="before")
    @classmethod
    def drop_time(cls, value: object) -> object:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return value


class DailyReportUpdateRequest(BaseModel):
    description: str | None = None
    signature_worker: str | None = None


class PhotoCreateRequest(BaseModel):
    photo_url: str = Field(min_length=1, max_length=500)
    thumbnail_url: str | None = Field(None, max_length=500)
    caption: str | None = Field(None, max_length=500)
    daily_report_id: int | None = Field(None, ge=1)


class PhotoCaptionRequest(BaseModel):
    caption: str | None = Field(None, max_length=500)


class AssignmentResponse(BaseModel):
    worker_id: int
    assigned_by: int
    is_responsible: bool
    assigned_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderAreaResponse(BaseModel):
    area_id: int
    name: str | None = None
    is_completed: bool
    completed_by: int | None = None
    completed_at: datetime | None = None


class DailyReportResponse(BaseModel):
    id: int
    order_id: int
    report_date: date
    description: str
    created_by: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PhotoResponse(BaseModel):
    id: int
    order_id: int
    daily_report_id: int | None = None
    photo_url: str
    thumbnail_url: str | None = None
    caption: str | None = None
    uploaded_by: int
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ActivityResponse(BaseModel):
    user_id: int
    action: str
    description: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: int
    order_number: str
    order_type: OrderTypeLiteral
    status: str
    client_name: str
    client_email: str | None = None
    client_phone: str
    address: str
    city: str | None = None
    scheduled_date: datetime
    notes: str | None = None
    responsible_worker_id: int | None = None
    work_started_at: datetime | None = None
    work_completed_at: datetime | None = None
    gps_start_latitude: float | None = None
    gps_start_longitude: float | None = None
    gps_end_latitude: float | None = None
    gps_end_longitude: float | None = None
    has_worker_signature: bool = False
    has_client_signature: bool = False
    created_by: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderSnapshotResponse(OrderResponse):
    workers: list[AssignmentResponse] = Field(default_factory=list)
    areas: list[OrderAreaResponse] = Field(default_factory=list)
    daily_reports: list[DailyReportResponse] = Field(default_factory=list)
    photos: list[PhotoResponse] = Field(default_factory=list)
    activity: list[ActivityResponse] = Field(default_factory=list)
