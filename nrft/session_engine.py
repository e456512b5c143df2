"""Survey session lifecycle.

A session is issued PENDING with an unguessable token. It leaves PENDING
exactly once: to COMPLETED when answers are accepted, or to EXPIRED when any
fetch or submit observes ``now >= expires_at``. There is no background job;
expiry is applied lazily by the operation that notices it.
"""

from __future__ import annotations
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from . import config, crud
from .clock import ensure_utc, to_iso, utc_now
from .config import SESSION_TTL_HOURS, survey_url_for
from .errors import ConflictError, GoneError, NotFoundError, ValidationError
from .followup_engine import create_auto_follow_up
from .models_db import (
    Answer,
    Assessment,
    Notification,
    QuestionType,
    SessionStatus,
    SurveyChannel,
    SurveySession,
)
from .scoring_engine import analyze, unique_in_order

logger = logging.getLogger(__name__)

TOKEN_BYTES = 16
TOKEN_ATTEMPTS = 5
SURVEY_COMPLETED = "SURVEY_COMPLETED"


def generate_token(db: Session) -> str:
    for _ in range(TOKEN_ATTEMPTS):
        token = secrets.token_hex(TOKEN_BYTES)
        if not crud.token_exists(db, token):
            return token
    raise RuntimeError("Could not allocate a unique session token")


def is_expired(session: SurveySession, now: datetime) -> bool:
    return now >= ensure_utc(session.expires_at)


def _transition(db: Session, session_id: str, to_status: SessionStatus, **values) -> bool:
    # Conditional update; only one caller can move a session out of PENDING.
    result = db.execute(
        update(SurveySession)
        .where(SurveySession.id == session_id, SurveySession.status == SessionStatus.PENDING)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def expire_if_due(db: Session, session: SurveySession, now: Optional[datetime] = None) -> bool:
    """Apply the lazy PENDING -> EXPIRED transition. Commits when it fires."""
    now = now or utc_now()
    if session.status != SessionStatus.PENDING or not is_expired(session, now):
        return False
    moved = _transition(db, session.id, SessionStatus.EXPIRED)
    db.commit()
    db.refresh(session)
    if moved:
        logger.info("Session %s expired at %s", session.id, to_iso(session.expires_at))
    return moved


def issue_session(
    db: Session,
    pharmacy_id: str,
    patient_id: str,
    template_id: str,
    expires_at: Optional[datetime] = None,
    channel: str = "WEB",
    delivery_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    try:
        channel_enum = SurveyChannel(channel or "WEB")
    except ValueError:
        raise ValidationError(f"Unsupported channel: {channel}")
    if delivery_address is not None:
        delivery_address = delivery_address.strip() or None
    if channel_enum != SurveyChannel.WEB and not delivery_address:
        raise ValidationError("deliveryAddress is required for EMAIL/SMS channels")

    patient = crud.get_patient(db, pharmacy_id, patient_id)
    template = crud.get_template(db, template_id, pharmacy_id)
    if not template.is_active:
        raise NotFoundError("Survey template not found")

    now = now or utc_now()
    expires_at = ensure_utc(expires_at) if expires_at else now + timedelta(hours=SESSION_TTL_HOURS)

    session = SurveySession(
        token=generate_token(db),
        pharmacy_id=pharmacy_id,
        patient_id=patient.id,
        template_id=template.id,
        status=SessionStatus.PENDING,
        channel=channel_enum,
        delivery_address=delivery_address,
        expires_at=expires_at,
        created_at=now,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info("Issued session %s for patient %s via %s", session.id, patient.id, channel_enum.value)

    if channel_enum != SurveyChannel.WEB:
        # Delivery integration is not wired; record the intent only.
        logger.info("Dispatch survey via %s to %s (token %s...)", channel_enum.value, delivery_address, session.token[:6])

    return {
        "token": session.token,
        "surveyUrl": survey_url_for(session.token),
        "expiresAt": to_iso(session.expires_at),
        "channel": session.channel.value,
        "deliveryAddress": session.delivery_address,
    }


def _format_option(option, include_impacts: bool) -> dict:
    return {
        "id": option.id,
        "text": option.text,
        "order": option.order,
        "impact": dict(option.impact or {}) if include_impacts else {},
    }


def format_template(template, include_impacts: bool = True) -> dict:
    questions = sorted(template.questions, key=lambda q: q.order)
    return {
        "id": template.id,
        "name": template.name,
        "description": template.description,
        "version": template.version,
        "baseTemplateId": template.base_template_id,
        "questions": [
            {
                "id": q.id,
                "category": q.category,
                "text": q.text,
                "order": q.order,
                "type": q.type.value,
                "options": [_format_option(o, include_impacts) for o in sorted(q.options, key=lambda o: o.order)],
            }
            for q in questions
        ],
    }


def fetch_session(db: Session, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    session = crud.get_session_by_token(db, token)
    expire_if_due(db, session, now)
    return {
        "token": session.token,
        "status": session.status.value,
        "expiresAt": to_iso(session.expires_at),
        "templateId": session.template_id,
        "patientId": session.patient_id,
        "channel": session.channel.value,
        "deliveryAddress": session.delivery_address,
        "template": format_template(session.template, include_impacts=config.EXPOSE_OPTION_IMPACTS),
    }


def validate_answers(template, answers: Sequence[Dict[str, Any]]) -> List[str]:
    """Check answers against the template and return the flattened option ids."""
    if not answers:
        raise ValidationError("At least one answer is required")
    questions = {q.id: q for q in template.questions}
    seen_questions = set()
    selected: List[str] = []
    for answer in answers:
        qid = answer["question_id"]
        option_ids = list(answer["option_ids"])
        if qid in seen_questions:
            raise ValidationError(f"Question answered more than once: {qid}")
        seen_questions.add(qid)
        question = questions.get(qid)
        if question is None:
            raise ValidationError(f"Question does not belong to this survey: {qid}")
        if not option_ids:
            raise ValidationError(f"No options selected for question {qid}")
        allowed = {o.id for o in question.options}
        foreign = [oid for oid in option_ids if oid not in allowed]
        if foreign:
            raise ValidationError(f"Options do not belong to question {qid}: {', '.join(foreign)}")
        if question.type == QuestionType.SINGLE and len(set(option_ids)) != 1:
            raise ValidationError(f"Question {qid} accepts exactly one option")
        selected.extend(option_ids)
    return unique_in_order(selected)


def impacts_for_template(template) -> Dict[str, dict]:
    return {o.id: dict(o.impact or {}) for q in template.questions for o in q.options}


def _notify_pharmacists(db: Session, session: SurveySession) -> int:
    pharmacists = crud.list_active_pharmacists(db, session.pharmacy_id)
    if not pharmacists:
        return 0
    patient_name = "환자"
    if session.patient is not None:
        patient_name = session.patient.display_name or session.patient.name
    message = f"{patient_name}님의 설문이 접수되었습니다. 상담을 진행해 주세요."
    db.add_all(
        Notification(pharmacist_id=p.id, type=SURVEY_COMPLETED, message=message)
        for p in pharmacists
    )
    return len(pharmacists)


def submit_answers(
    db: Session,
    token: str,
    answers: Sequence[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Accept a respondent's answers and materialize the assessment.

    Answers, assessment, follow-up, notifications and the COMPLETED
    transition commit together or not at all.
    """
    now = now or utc_now()
    session = crud.get_session_by_token(db, token)

    if session.status != SessionStatus.PENDING:
        logger.info("Rejected submission for session %s in status %s", session.id, session.status.value)
        if session.status == SessionStatus.EXPIRED:
            raise GoneError("Session expired")
        raise ConflictError("Survey already completed")

    if is_expired(session, now):
        expire_if_due(db, session, now)
        raise GoneError("Session expired")

    selected = validate_answers(session.template, answers)
    analysis = analyze(selected, impacts_for_template(session.template))

    try:
        if not _transition(db, session.id, SessionStatus.COMPLETED, completed_at=now):
            db.rollback()
            logger.info("Concurrent submission lost the race for session %s", session.id)
            raise ConflictError("Survey already completed or expired")

        db.add_all(
            Answer(session_id=session.id, question_id=a["question_id"], option_ids=unique_in_order(a["option_ids"]))
            for a in answers
        )

        assessment = Assessment(
            id=str(uuid.uuid4()),
            pharmacy_id=session.pharmacy_id,
            patient_id=session.patient_id,
            session_id=session.id,
            health_type=analysis["health_type"],
            selected_option_ids=selected,
            scores=analysis["scores"],
            extended_scores=analysis["extended_scores"],
            focus_axes=analysis["focus_axes"],
            clusters=analysis["clusters"],
            recommendations=analysis["recommendations"],
            created_at=now,
            updated_at=now,
        )
        db.add(assessment)
        db.flush()

        create_auto_follow_up(db, assessment.id, analysis["health_type"], now=now)
        notified = _notify_pharmacists(db, session)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Submission failed for session %s; rolled back", session.id)
        raise

    logger.info(
        "Assessment %s created for session %s (%s), %d pharmacist(s) notified",
        assessment.id, session.id, analysis["health_type"], notified,
    )
    return {
        "assessmentId": assessment.id,
        "healthType": analysis["health_type"],
        "scores": analysis["scores"],
    }
