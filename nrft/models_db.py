from __future__ import annotations
import enum
import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from .clock import utc_now
from .db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


class SessionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class SurveyChannel(str, enum.Enum):
    WEB = "WEB"
    EMAIL = "EMAIL"
    SMS = "SMS"


class QuestionType(str, enum.Enum):
    SINGLE = "SINGLE"
    MULTIPLE = "MULTIPLE"


class AssessmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class FollowUpStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class PharmacistRole(str, enum.Enum):
    PHARMACIST = "PHARMACIST"
    ADMIN = "ADMIN"


def _enum(cls):
    return Enum(cls, native_enum=False, length=16, validate_strings=True)


class Pharmacy(Base):
    __tablename__ = "pharmacies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(200))
    brand_color: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    brand_tagline: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Pharmacist(Base):
    __tablename__ = "pharmacists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    pharmacy_id: Mapped[str] = mapped_column(ForeignKey("pharmacies.id"), index=True)
    name: Mapped[str] = mapped_column(String(100))
    role: Mapped[PharmacistRole] = mapped_column(_enum(PharmacistRole), default=PharmacistRole.PHARMACIST)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    pharmacy_id: Mapped[str] = mapped_column(ForeignKey("pharmacies.id"), index=True)
    name: Mapped[str] = mapped_column(String(100))
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone_last4: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    birth_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tags: Mapped[list] = mapped_column(JSONType, default=list)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)


class SurveyTemplate(Base):
    __tablename__ = "survey_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    # NULL means the template is shared by every pharmacy.
    pharmacy_id: Mapped[Optional[str]] = mapped_column(ForeignKey("pharmacies.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    base_template_id: Mapped[Optional[str]] = mapped_column(ForeignKey("survey_templates.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    questions: Mapped[List["Question"]] = relationship(
        back_populates="template",
        order_by="Question.order",
        cascade="all, delete-orphan",
    )


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    template_id: Mapped[str] = mapped_column(ForeignKey("survey_templates.id"), index=True)
    category: Mapped[str] = mapped_column(String(50))
    text: Mapped[str] = mapped_column(Text)
    order: Mapped[int] = mapped_column(Integer, default=0)
    type: Mapped[QuestionType] = mapped_column(_enum(QuestionType), default=QuestionType.SINGLE)

    template: Mapped[SurveyTemplate] = relationship(back_populates="questions")
    options: Mapped[List["QuestionOption"]] = relationship(
        back_populates="question",
        order_by="QuestionOption.order",
        cascade="all, delete-orphan",
    )


class QuestionOption(Base):
    __tablename__ = "question_options"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    question_id: Mapped[str] = mapped_column(ForeignKey("questions.id"), index=True)
    text: Mapped[str] = mapped_column(Text)
    order: Mapped[int] = mapped_column(Integer, default=0)
    # Sparse axis -> signed delta; keys outside the five axes are tolerated.
    impact: Mapped[dict] = mapped_column(JSONType, default=dict)

    question: Mapped[Question] = relationship(back_populates="options")


class SurveySession(Base):
    __tablename__ = "survey_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    pharmacy_id: Mapped[str] = mapped_column(ForeignKey("pharmacies.id"), index=True)
    patient_id: Mapped[str] = mapped_column(ForeignKey("patients.id"), index=True)
    template_id: Mapped[str] = mapped_column(ForeignKey("survey_templates.id"))
    status: Mapped[SessionStatus] = mapped_column(_enum(SessionStatus), default=SessionStatus.PENDING)
    channel: Mapped[SurveyChannel] = mapped_column(_enum(SurveyChannel), default=SurveyChannel.WEB)
    delivery_address: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    template: Mapped[SurveyTemplate] = relationship()
    patient: Mapped[Patient] = relationship()


class Answer(Base):
    __tablename__ = "answers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(ForeignKey("survey_sessions.id"), index=True)
    question_id: Mapped[str] = mapped_column(ForeignKey("questions.id"))
    option_ids: Mapped[list] = mapped_column(JSONType, default=list)


class Assessment(Base):
    __tablename__ = "assessments"
    __table_args__ = (UniqueConstraint("session_id", name="uq_assessments_session_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    pharmacy_id: Mapped[str] = mapped_column(ForeignKey("pharmacies.id"), index=True)
    patient_id: Mapped[str] = mapped_column(ForeignKey("patients.id"), index=True)
    session_id: Mapped[str] = mapped_column(ForeignKey("survey_sessions.id"))
    status: Mapped[AssessmentStatus] = mapped_column(_enum(AssessmentStatus), default=AssessmentStatus.PENDING)
    health_type: Mapped[str] = mapped_column(String(100))
    selected_option_ids: Mapped[list] = mapped_column(JSONType, default=list)
    scores: Mapped[dict] = mapped_column(JSONType, default=dict)
    extended_scores: Mapped[dict] = mapped_column(JSONType, default=dict)
    focus_axes: Mapped[list] = mapped_column(JSONType, default=list)
    clusters: Mapped[dict] = mapped_column(JSONType, default=dict)
    recommendations: Mapped[dict] = mapped_column(JSONType, default=dict)
    ai_consultation_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    patient: Mapped[Patient] = relationship()
    session: Mapped[SurveySession] = relationship()
    follow_ups: Mapped[List["FollowUp"]] = relationship(
        back_populates="assessment",
        order_by="FollowUp.next_visit_date",
    )


class FollowUpTemplate(Base):
    __tablename__ = "follow_up_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    health_type: Mapped[str] = mapped_column(String(100), unique=True)
    checklist: Mapped[list] = mapped_column(JSONType, default=list)
    offset_days: Mapped[int] = mapped_column(Integer, default=7)


class FollowUp(Base):
    __tablename__ = "follow_ups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    assessment_id: Mapped[str] = mapped_column(ForeignKey("assessments.id"), index=True)
    next_visit_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[FollowUpStatus] = mapped_column(_enum(FollowUpStatus), default=FollowUpStatus.SCHEDULED)
    checklist: Mapped[list] = mapped_column(JSONType, default=list)
    assignee: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    assessment: Mapped[Assessment] = relationship(back_populates="follow_ups")


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    pharmacist_id: Mapped[str] = mapped_column(ForeignKey("pharmacists.id"), index=True)
    type: Mapped[str] = mapped_column(String(50))
    message: Mapped[str] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    pharmacist_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    pharmacy_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    method: Mapped[str] = mapped_column(String(10))
    path: Mapped[str] = mapped_column(String(500))
    status: Mapped[int] = mapped_column(Integer)
    duration_ms: Mapped[int] = mapped_column(Integer)
    # query params, client ip, whether a body was sent
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
