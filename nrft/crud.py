from __future__ import annotations
from typing import List, Optional
from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload
from .errors import NotFoundError
from .models_db import (
    Assessment,
    AuditLog,
    FollowUp,
    Notification,
    Patient,
    Pharmacist,
    Question,
    SurveySession,
    SurveyTemplate,
)

def get_active_pharmacist(db: Session, pharmacist_id: str) -> Optional[Pharmacist]:
    obj = db.get(Pharmacist, pharmacist_id)
    if obj is None or not obj.is_active:
        return None
    return obj

def list_active_pharmacists(db: Session, pharmacy_id: str) -> List[Pharmacist]:
    return list(
        db.scalars(
            select(Pharmacist)
            .where(Pharmacist.pharmacy_id == pharmacy_id, Pharmacist.is_active == True)
            .order_by(Pharmacist.created_at.asc())
        )
    )

# Patients

def create_patient(db: Session, pharmacy_id: str, **fields) -> Patient:
    obj = Patient(pharmacy_id=pharmacy_id, **fields)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def get_patient(db: Session, pharmacy_id: str, patient_id: str) -> Patient:
    obj = db.get(Patient, patient_id)
    if obj is None or obj.pharmacy_id != pharmacy_id:
        raise NotFoundError("Patient not found")
    return obj

def list_patients(db: Session, pharmacy_id: str, q: Optional[str] = None, gender: Optional[str] = None, limit: int = 100) -> List[Patient]:
    stmt = select(Patient).where(Patient.pharmacy_id == pharmacy_id)
    if gender:
        stmt = stmt.where(Patient.gender == gender)
    if q:
        stmt = stmt.where(or_(Patient.display_name.ilike(f"%{q}%"), Patient.phone_last4.contains(q)))
    return list(db.scalars(stmt.order_by(Patient.created_at.desc()).limit(limit)))

def update_patient(db: Session, patient: Patient, changes: dict) -> Patient:
    for key, value in changes.items():
        if value is not None:
            setattr(patient, key, value)
    db.commit()
    db.refresh(patient)
    return patient

# Templates

def _template_query():
    return select(SurveyTemplate).options(
        selectinload(SurveyTemplate.questions).selectinload(Question.options)
    )

def list_templates(db: Session, pharmacy_id: str) -> List[SurveyTemplate]:
    stmt = (
        _template_query()
        .where(
            SurveyTemplate.is_active == True,
            or_(SurveyTemplate.pharmacy_id.is_(None), SurveyTemplate.pharmacy_id == pharmacy_id),
        )
        .order_by(SurveyTemplate.created_at.desc())
    )
    return list(db.scalars(stmt))

def get_template(db: Session, template_id: str, pharmacy_id: Optional[str] = None) -> SurveyTemplate:
    obj = db.scalars(_template_query().where(SurveyTemplate.id == template_id)).first()
    if obj is None:
        raise NotFoundError("Survey template not found")
    if pharmacy_id is not None and obj.pharmacy_id not in (None, pharmacy_id):
        raise NotFoundError("Survey template not found")
    return obj

# Sessions

def token_exists(db: Session, token: str) -> bool:
    return db.scalar(select(SurveySession.id).where(SurveySession.token == token)) is not None

def get_session_by_token(db: Session, token: str) -> SurveySession:
    stmt = (
        select(SurveySession)
        .where(SurveySession.token == token)
        .options(
            selectinload(SurveySession.template)
            .selectinload(SurveyTemplate.questions)
            .selectinload(Question.options),
            selectinload(SurveySession.patient),
        )
    )
    obj = db.scalars(stmt).first()
    if obj is None:
        raise NotFoundError("Session not found")
    return obj

# Assessments

def get_assessment(db: Session, pharmacy_id: str, assessment_id: str) -> Assessment:
    stmt = (
        select(Assessment)
        .where(Assessment.id == assessment_id)
        .options(
            selectinload(Assessment.patient),
            selectinload(Assessment.session),
            selectinload(Assessment.follow_ups),
        )
    )
    obj = db.scalars(stmt).first()
    if obj is None or obj.pharmacy_id != pharmacy_id:
        raise NotFoundError("Assessment not found")
    return obj

def list_assessments(db: Session, pharmacy_id: str, status: Optional[str] = None, limit: int = 50) -> List[Assessment]:
    stmt = (
        select(Assessment)
        .where(Assessment.pharmacy_id == pharmacy_id)
        .options(
            selectinload(Assessment.patient),
            selectinload(Assessment.session),
            selectinload(Assessment.follow_ups),
        )
    )
    if status:
        stmt = stmt.where(Assessment.status == status)
    return list(db.scalars(stmt.order_by(Assessment.created_at.desc()).limit(limit)))

def list_assessments_for_patient(db: Session, patient_id: str) -> List[Assessment]:
    stmt = (
        select(Assessment)
        .where(Assessment.patient_id == patient_id)
        .options(selectinload(Assessment.session), selectinload(Assessment.follow_ups))
        .order_by(Assessment.created_at.desc())
    )
    return list(db.scalars(stmt))

def list_assessments_for_stats(db: Session, pharmacy_id: str, limit: int = 50000) -> List[Assessment]:
    return list(
        db.scalars(
            select(Assessment)
            .where(Assessment.pharmacy_id == pharmacy_id)
            .order_by(Assessment.created_at.asc())
            .limit(limit)
        )
    )

# Follow-ups

def get_follow_up(db: Session, pharmacy_id: str, follow_up_id: str) -> FollowUp:
    obj = db.get(FollowUp, follow_up_id)
    if obj is None or obj.assessment.pharmacy_id != pharmacy_id:
        raise NotFoundError("Follow-up not found")
    return obj

def list_follow_ups(db: Session, assessment_id: str) -> List[FollowUp]:
    return list(
        db.scalars(
            select(FollowUp)
            .where(FollowUp.assessment_id == assessment_id)
            .order_by(FollowUp.next_visit_date.asc())
        )
    )

# Notifications

def list_notifications(db: Session, pharmacist_id: str, limit: int = 50) -> List[Notification]:
    return list(
        db.scalars(
            select(Notification)
            .where(Notification.pharmacist_id == pharmacist_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
    )

def mark_notification_read(db: Session, pharmacist_id: str, notification_id: str) -> Notification:
    obj = db.get(Notification, notification_id)
    if obj is None or obj.pharmacist_id != pharmacist_id:
        raise NotFoundError("Notification not found")
    obj.is_read = True
    db.commit()
    db.refresh(obj)
    return obj

# Audit

def record_audit(db: Session, **fields) -> AuditLog:
    obj = AuditLog(**fields)
    db.add(obj)
    db.commit()
    return obj

def list_audit_logs(db: Session, pharmacy_id: Optional[str] = None, limit: int = 100) -> List[AuditLog]:
    stmt = select(AuditLog)
    if pharmacy_id is not None:
        stmt = stmt.where(AuditLog.pharmacy_id == pharmacy_id)
    return list(db.scalars(stmt.order_by(AuditLog.created_at.desc()).limit(limit)))
