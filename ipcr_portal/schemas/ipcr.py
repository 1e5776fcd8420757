from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import List, Literal, Optional

from ipcr_portal.models.indicator import IndicatorCategory
from ipcr_portal.models.performance_form import FormStatus

Score = Optional[int]
ScoreField = Literal["quantity_score", "quality_score", "timeliness_score"]


class FormCreate(BaseModel):
    """Defaults to the active cycle when cycle_id is omitted."""
    cycle_id: Optional[int] = None
    immediate_supervisor_id: Optional[int] = None


class FormCreateResult(BaseModel):
    form_id: int
    created: bool


class IndicatorBase(BaseModel):
    """Owner-editable fields. Scores are entered by reviewers through rating and finalize."""
    category: IndicatorCategory
    description: str = Field(..., min_length=1)
    indicator_text: Optional[str] = None
    actual_accomplishment: Optional[str] = None
    remarks: Optional[str] = None
    output_order: int = 0


class IndicatorCreate(IndicatorBase):
    pass


class IndicatorUpdate(BaseModel):
    category: Optional[IndicatorCategory] = None
    description: Optional[str] = Field(None, min_length=1)
    indicator_text: Optional[str] = None
    actual_accomplishment: Optional[str] = None
    remarks: Optional[str] = None
    output_order: Optional[int] = None

    @field_validator("category", "description", "output_order")
    @classmethod
    def not_null(cls, value, info):
        # Omit a field to leave it unchanged; these columns cannot be cleared
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class IndicatorSaveItem(IndicatorBase):
    """Existing rows carry their id; rows without one are inserted."""
    id: Optional[int] = None


class IndicatorBatchSave(BaseModel):
    indicators: List[IndicatorSaveItem]


class ScoreUpdate(BaseModel):
    field: ScoreField
    value: int = Field(..., ge=1, le=5)


class IndicatorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    form_id: int
    category: IndicatorCategory
    output_order: int
    description: str
    indicator_text: Optional[str] = None
    actual_accomplishment: Optional[str] = None
    remarks: Optional[str] = None
    quantity_score: Score = None
    quality_score: Score = None
    timeliness_score: Score = None
    average_score: Optional[float] = None


class FormSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    employee_name: Optional[str] = None
    division_id: Optional[int] = None
    cycle_id: int
    status: FormStatus
    version: int
    final_average_rating: Optional[float] = None
    adjectival_rating: Optional[str] = None
    indicator_count: int = 0
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None


class FormDetail(FormSummary):
    immediate_supervisor_id: Optional[int] = None
    review_comments: Optional[str] = None
    final_remarks: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    indicators: List[IndicatorResponse] = []


class EndorseRequest(BaseModel):
    comments: Optional[str] = None


class ReturnRequest(BaseModel):
    remarks: str


class RatingInput(BaseModel):
    indicator_id: int
    quantity_score: int = Field(..., ge=1, le=5)
    quality_score: int = Field(..., ge=1, le=5)
    timeliness_score: int = Field(..., ge=1, le=5)


class FinalizeRequest(BaseModel):
    ratings: Optional[List[RatingInput]] = None
    final_remarks: Optional[str] = None
    expected_version: Optional[int] = None


class TransitionResult(BaseModel):
    form_id: int
    status: FormStatus
    version: int


class FinalizeResult(TransitionResult):
    final_average_rating: float
    adjectival_rating: str
    indicator_averages: List[float]
