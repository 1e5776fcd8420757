from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date, datetime
from typing import Optional


class CycleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    period_start: date
    period_end: date

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be earlier than period_start")
        return self


class CycleCreate(CycleBase):
    is_active: bool = False


class CycleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    is_active: Optional[bool] = None


class CycleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    period_start: date
    period_end: date
    is_active: bool
    created_at: Optional[datetime] = None
