from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AreaCreateRequest(BaseModel):
    key: str = Field(min_length=2, max_length=64, pattern=r"^[a-z_]+$")
    name: str = Field(min_length=2, max_length=120)
    display_order: int = Field(0, ge=0)


class AreaResponse(BaseModel):
    id: int
    key: str
    name: str
    display_order: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
