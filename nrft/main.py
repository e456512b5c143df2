from __future__ import annotations
from fastapi import FastAPI, Header, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse, JSONResponse
from typing import Optional
import io, csv, logging, time
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import ai_notes, crud, db as database
from .clock import ensure_utc, to_iso
from .config import AXES, CORS_ORIGINS
from .db import get_session
from .errors import NrftError, UnauthorizedError, ValidationError
from .models_api import (
    AnswerSubmitRequest,
    AssessmentStatusRequest,
    FollowUpCreateRequest,
    FollowUpUpdateRequest,
    PatientCreateRequest,
    PatientUpdateRequest,
    ReminderRequest,
    SessionCreateRequest,
)
from .models_db import AssessmentStatus, FollowUp, FollowUpStatus, Notification, Pharmacist
from .profile_engine import (
    age_group,
    assessment_stats,
    build_timeline,
    format_assessment,
    format_follow_up,
    format_notification,
    format_patient,
    patient_label,
)
from .scoring_engine import analyze
from .session_engine import fetch_session, format_template, impacts_for_template, issue_session, submit_answers

logger = logging.getLogger(__name__)

app = FastAPI(title="NRFT Pharmacy Intake API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

CHANNEL_LABELS = {"SMS": "문자", "EMAIL": "이메일", "CALL": "전화"}
AUDIT_PREFIX = "/v1/"
UNAUDITED_PATHS = {"/v1/health"}

@app.middleware("http")
async def audit_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    path = request.url.path
    if not path.startswith(AUDIT_PREFIX) or path in UNAUDITED_PATHS or request.method == "OPTIONS":
        return response

    user = getattr(request.state, "audit_user", None) or {}
    entry = dict(
        pharmacist_id=user.get("pharmacist_id"),
        pharmacy_id=user.get("pharmacy_id"),
        role=user.get("role"),
        method=request.method,
        path=path,
        status=response.status_code,
        duration_ms=int((time.perf_counter() - start) * 1000),
        metadata_={
            "query": dict(request.query_params),
            "ip": request.client.host if request.client else None,
            "bodyPresent": int(request.headers.get("content-length") or 0) > 0,
        },
    )
    try:
        with database.SessionLocal() as db:
            crud.record_audit(db, **entry)
    except SQLAlchemyError:
        # Audit failures never change the response.
        logger.exception("Failed to persist audit log for %s %s", request.method, path)
    return response

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %d (%.1f ms)",
        request.method, request.url.path, response.status_code, (time.perf_counter() - start) * 1000,
    )
    return response

@app.exception_handler(NrftError)
async def handle_nrft_error(request: Request, exc: NrftError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

def current_pharmacist(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_session),
) -> Pharmacist:
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Unauthorized")
    pharmacist_id = authorization.replace("Bearer ", "", 1).strip()
    pharmacist = crud.get_active_pharmacist(db, pharmacist_id)
    if pharmacist is None:
        raise UnauthorizedError("User is inactive or not found")
    # Plain values; the ORM row is detached by the time the audit middleware runs.
    request.state.audit_user = {
        "pharmacist_id": pharmacist.id,
        "pharmacy_id": pharmacist.pharmacy_id,
        "role": pharmacist.role.value,
    }
    return pharmacist

@app.on_event("startup")
def on_startup():
    if database.SessionLocal is None:
        database.init_db()
    database.create_tables()

@app.get("/v1/health")
def health():
    return {"status": "ok"}

# Templates

@app.get("/v1/templates")
def list_survey_templates(db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    return [format_template(t) for t in crud.list_templates(db, user.pharmacy_id)]

@app.get("/v1/templates/{template_id}")
def read_survey_template(template_id: str, db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    return format_template(crud.get_template(db, template_id, user.pharmacy_id))

# Sessions

@app.post("/v1/sessions", status_code=201)
def create_survey_session(
    req: SessionCreateRequest,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    return issue_session(
        db,
        pharmacy_id=user.pharmacy_id,
        patient_id=req.patient_id,
        template_id=req.template_id,
        expires_at=req.expires_at,
        channel=req.channel,
        delivery_address=req.delivery_address,
    )

@app.get("/v1/sessions/{token}")
def read_survey_session(token: str, db: Session = Depends(get_session)):
    return fetch_session(db, token)

@app.post("/v1/sessions/{token}/answers", status_code=201)
def submit_survey_answers(token: str, req: AnswerSubmitRequest, db: Session = Depends(get_session)):
    answers = [{"question_id": a.question_id, "option_ids": list(a.option_ids)} for a in req.answers]
    return submit_answers(db, token, answers)

# Patients

@app.post("/v1/patients", status_code=201)
def create_patient(req: PatientCreateRequest, db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    obj = crud.create_patient(
        db,
        user.pharmacy_id,
        name=req.name,
        display_name=req.display_name or req.name,
        phone_last4=req.phone[-4:],
        gender=req.gender,
        birth_year=req.birth_year,
        tags=req.tags,
        note=req.note,
    )
    return format_patient(obj)

@app.get("/v1/patients")
def list_patients(
    q: Optional[str] = None,
    gender: Optional[str] = None,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    if gender and gender not in {"male", "female", "other"}:
        raise ValidationError(f"Invalid gender: {gender}")
    return [format_patient(p) for p in crud.list_patients(db, user.pharmacy_id, q=q, gender=gender)]

@app.get("/v1/patients/{patient_id}")
def read_patient(patient_id: str, db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    return format_patient(crud.get_patient(db, user.pharmacy_id, patient_id))

@app.patch("/v1/patients/{patient_id}")
def update_patient(
    patient_id: str,
    req: PatientUpdateRequest,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    patient = crud.get_patient(db, user.pharmacy_id, patient_id)
    return format_patient(crud.update_patient(db, patient, req.model_dump(exclude_unset=True)))

@app.get("/v1/patients/{patient_id}/timeline")
def patient_timeline(patient_id: str, db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    patient = crud.get_patient(db, user.pharmacy_id, patient_id)
    return build_timeline(crud.list_assessments_for_patient(db, patient.id))

# Assessments

@app.get("/v1/assessments")
def list_assessments(
    status: Optional[str] = None,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    status_filter = None
    if status:
        try:
            status_filter = AssessmentStatus(status.upper())
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")
    return [format_assessment(a) for a in crud.list_assessments(db, user.pharmacy_id, status=status_filter)]

@app.get("/v1/assessments/stats")
def assessment_statistics(
    k_min: int = 1,
    limit: int = 50000,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    return assessment_stats(crud.list_assessments_for_stats(db, user.pharmacy_id, limit=limit), k_min=k_min)

@app.get("/v1/assessments/stats.csv")
def assessment_statistics_csv(
    k_min: int = 1,
    limit: int = 50000,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    data = assessment_stats(crud.list_assessments_for_stats(db, user.pharmacy_id, limit=limit), k_min=k_min)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["health_type", "count"] + [f"mean_{axis}" for axis in AXES])
    for r in data["rows"]:
        means = r.get("meanScores") or {}
        writer.writerow([r["healthType"], r["count"]] + [means.get(axis, "") for axis in AXES])
    buffer.seek(0)
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=nrft_assessment_stats.csv"},
    )

@app.get("/v1/assessments/{assessment_id}")
def read_assessment(assessment_id: str, db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    return format_assessment(crud.get_assessment(db, user.pharmacy_id, assessment_id))

@app.patch("/v1/assessments/{assessment_id}/status")
def update_assessment_status(
    assessment_id: str,
    req: AssessmentStatusRequest,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    assessment = crud.get_assessment(db, user.pharmacy_id, assessment_id)
    assessment.status = AssessmentStatus(req.status)
    db.commit()
    return format_assessment(crud.get_assessment(db, user.pharmacy_id, assessment_id))

@app.post("/v1/assessments/{assessment_id}/ai-note")
def generate_ai_note(assessment_id: str, db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    assessment = crud.get_assessment(db, user.pharmacy_id, assessment_id)
    patient = assessment.patient
    if patient is None:
        raise ValidationError("Patient data missing")

    note = ai_notes.generate_consultation_note({
        "patient_name": patient_label(patient),
        "age_group": age_group(patient.birth_year),
        "gender": patient.gender or "other",
        "scores": assessment.scores,
        "health_type": assessment.health_type,
    })
    assessment.ai_consultation_note = note
    db.commit()
    return {
        "aiConsultationNote": note,
        "assessment": format_assessment(crud.get_assessment(db, user.pharmacy_id, assessment_id)),
    }

@app.get("/v1/assessments/{assessment_id}/recompute")
def recompute_assessment(assessment_id: str, db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    assessment = crud.get_assessment(db, user.pharmacy_id, assessment_id)
    template = crud.get_template(db, assessment.session.template_id)
    result = analyze(assessment.selected_option_ids or [], impacts_for_template(template))
    return {
        "healthType": result["health_type"],
        "scores": result["scores"],
        "clusters": result["clusters"],
        "recommendations": result["recommendations"],
        "matchesStored": (
            result["scores"] == assessment.scores
            and result["health_type"] == assessment.health_type
            and result["clusters"] == assessment.clusters
        ),
    }

# Follow-ups

@app.post("/v1/follow-ups/{assessment_id}", status_code=201)
def create_follow_up(
    assessment_id: str,
    req: FollowUpCreateRequest,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    assessment = crud.get_assessment(db, user.pharmacy_id, assessment_id)
    obj = FollowUp(
        assessment_id=assessment.id,
        next_visit_date=ensure_utc(req.next_visit_date),
        checklist=req.checklist or [],
        status=FollowUpStatus(req.status),
        assignee=req.assignee,
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return format_follow_up(obj)

@app.get("/v1/follow-ups/{assessment_id}")
def list_follow_ups(assessment_id: str, db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    assessment = crud.get_assessment(db, user.pharmacy_id, assessment_id)
    return [format_follow_up(f) for f in crud.list_follow_ups(db, assessment.id)]

@app.patch("/v1/follow-ups/items/{follow_up_id}")
def update_follow_up(
    follow_up_id: str,
    req: FollowUpUpdateRequest,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    obj = crud.get_follow_up(db, user.pharmacy_id, follow_up_id)
    if req.next_visit_date is not None:
        obj.next_visit_date = ensure_utc(req.next_visit_date)
    if req.checklist is not None:
        obj.checklist = req.checklist
    if req.status is not None:
        obj.status = FollowUpStatus(req.status)
    if "assignee" in req.model_fields_set:
        obj.assignee = req.assignee
    db.commit()
    db.refresh(obj)
    return format_follow_up(obj)

@app.post("/v1/follow-ups/items/{follow_up_id}/remind")
def remind_follow_up(
    follow_up_id: str,
    req: ReminderRequest,
    db: Session = Depends(get_session),
    user: Pharmacist = Depends(current_pharmacist),
):
    obj = crud.get_follow_up(db, user.pharmacy_id, follow_up_id)
    patient = obj.assessment.patient
    label = patient_label(patient) if patient is not None else f"환자({obj.assessment.patient_id})"
    parts = [f"[F/U 리마인더:{CHANNEL_LABELS[req.channel]}] {label}"]
    if req.note and req.note.strip():
        parts.append(req.note.strip())
    message = " - ".join(parts)

    notification = Notification(pharmacist_id=user.id, type=f"FOLLOW_UP_REMINDER_{req.channel}", message=message)
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return {
        "notificationId": notification.id,
        "channel": req.channel,
        "message": message,
        "queuedAt": to_iso(notification.created_at),
    }

# Notifications

@app.get("/v1/notifications")
def list_notifications(db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    return [format_notification(n) for n in crud.list_notifications(db, user.id)]

@app.patch("/v1/notifications/{notification_id}/read")
def read_notification(notification_id: str, db: Session = Depends(get_session), user: Pharmacist = Depends(current_pharmacist)):
    return format_notification(crud.mark_notification_read(db, user.id, notification_id))
