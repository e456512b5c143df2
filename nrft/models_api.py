from __future__ import annotations
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class SessionCreateRequest(ApiModel):
    patient_id: str
    template_id: str
    expires_at: Optional[datetime] = None
    channel: Literal["WEB", "EMAIL", "SMS"] = "WEB"
    delivery_address: Optional[str] = None

class AnswerItem(ApiModel):
    question_id: str
    option_ids: List[str] = Field(min_length=1)

class AnswerSubmitRequest(ApiModel):
    answers: List[AnswerItem] = Field(min_length=1)

class PatientCreateRequest(ApiModel):
    name: str = Field(min_length=2)
    display_name: Optional[str] = Field(default=None, min_length=2)
    phone: str = Field(min_length=4)
    gender: Optional[Literal["male", "female", "other"]] = None
    birth_year: Optional[int] = Field(default=None, ge=1900, le=2100)
    tags: List[str] = Field(default_factory=list)
    note: Optional[str] = None

class PatientUpdateRequest(ApiModel):
    display_name: Optional[str] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    birth_year: Optional[int] = Field(default=None, ge=1900, le=2100)
    tags: Optional[List[str]] = None
    note: Optional[str] = None

class AssessmentStatusRequest(ApiModel):
    status: Literal["PENDING", "COMPLETED"]

class FollowUpCreateRequest(ApiModel):
    next_visit_date: datetime
    checklist: Optional[List[str]] = None
    status: Literal["SCHEDULED", "DONE", "CANCELLED"] = "SCHEDULED"
    assignee: Optional[str] = None

class FollowUpUpdateRequest(ApiModel):
    next_visit_date: Optional[datetime] = None
    checklist: Optional[List[str]] = None
    status: Optional[Literal["SCHEDULED", "DONE", "CANCELLED"]] = None
    assignee: Optional[str] = None

class ReminderRequest(ApiModel):
    channel: Literal["SMS", "EMAIL", "CALL"] = "SMS"
    note: Optional[str] = Field(default=None, max_length=500)
