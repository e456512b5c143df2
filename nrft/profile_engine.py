from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
import numpy as np
from .clock import ensure_utc, to_iso, utc_now
from .config import AXES
from .models_db import Assessment, FollowUp, Notification, Patient

def age_group(birth_year: Optional[int], today: Optional[datetime] = None) -> str:
    if not birth_year:
        return "정보 없음"
    age = (today or utc_now()).year - birth_year
    if age < 20:
        return "10대"
    if age < 30:
        return "20대"
    if age < 40:
        return "30대"
    if age < 50:
        return "40대"
    if age < 60:
        return "50대"
    return "60대 이상"

def patient_label(patient: Optional[Patient]) -> str:
    if patient is None:
        return "환자"
    return patient.display_name or patient.name

def format_patient(patient: Patient) -> Dict[str, Any]:
    return {
        "id": patient.id,
        "name": patient.name,
        "displayName": patient.display_name,
        "phoneLast4": patient.phone_last4,
        "gender": patient.gender,
        "birthYear": patient.birth_year,
        "tags": patient.tags or [],
        "note": patient.note,
        "createdAt": to_iso(patient.created_at),
    }

def patient_summary(patient: Patient) -> Dict[str, Any]:
    return {
        "id": patient.id,
        "nickname": patient_label(patient),
        "ageGroup": age_group(patient.birth_year),
        "gender": patient.gender or "other",
        "phoneLast4": patient.phone_last4 or "0000",
    }

def format_follow_up(follow_up: FollowUp) -> Dict[str, Any]:
    return {
        "id": follow_up.id,
        "assessmentId": follow_up.assessment_id,
        "nextVisitDate": to_iso(follow_up.next_visit_date),
        "status": follow_up.status.value,
        "checklist": follow_up.checklist or [],
        "assignee": follow_up.assignee,
        "createdAt": to_iso(follow_up.created_at),
    }

def format_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type,
        "message": notification.message,
        "isRead": notification.is_read,
        "createdAt": to_iso(notification.created_at),
    }

def format_assessment(assessment: Assessment) -> Dict[str, Any]:
    session = assessment.session
    follow_ups = sorted(assessment.follow_ups or [], key=lambda f: ensure_utc(f.next_visit_date))
    return {
        "id": assessment.id,
        "pharmacyId": assessment.pharmacy_id,
        "status": assessment.status.value,
        "healthType": assessment.health_type,
        "scores": assessment.scores,
        "extendedScores": assessment.extended_scores or {},
        "focusAxes": assessment.focus_axes or [],
        "clusters": assessment.clusters,
        "recommendations": assessment.recommendations,
        "aiConsultationNote": assessment.ai_consultation_note,
        "selectedOptionIds": assessment.selected_option_ids,
        "createdAt": to_iso(assessment.created_at),
        "updatedAt": to_iso(assessment.updated_at),
        "session": {
            "id": session.id,
            "token": session.token,
            "status": session.status.value,
            "channel": session.channel.value,
            "deliveryAddress": session.delivery_address,
            "createdAt": to_iso(session.created_at),
            "completedAt": to_iso(session.completed_at),
        } if session is not None else None,
        "followUps": [format_follow_up(f) for f in follow_ups],
        "patient": patient_summary(assessment.patient) if assessment.patient is not None else None,
    }

def build_timeline(assessments: List[Assessment]) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []
    for a in assessments:
        events.append({
            "type": "ASSESSMENT",
            "assessmentId": a.id,
            "createdAt": ensure_utc(a.created_at),
            "healthType": a.health_type,
            "sessionToken": a.session.token if a.session is not None else None,
            "status": a.status.value,
        })
        for f in a.follow_ups or []:
            events.append({
                "type": "FOLLOW_UP",
                "assessmentId": a.id,
                "followUpId": f.id,
                "createdAt": ensure_utc(f.created_at),
                "nextVisitDate": to_iso(f.next_visit_date),
                "status": f.status.value,
                "checklist": f.checklist or [],
            })
    events.sort(key=lambda e: e["createdAt"], reverse=True)
    for e in events:
        e["createdAt"] = e["createdAt"].isoformat()
    return events

def assessment_stats(assessments: List[Assessment], k_min: int = 1) -> Dict[str, Any]:
    """Per-health-type counts and mean axis scores."""
    agg: Dict[str, Dict[str, list]] = {}
    for a in assessments:
        bucket = agg.setdefault(a.health_type, {"count": 0, **{axis: [] for axis in AXES}})
        bucket["count"] += 1
        scores = a.scores or {}
        for axis in AXES:
            if isinstance(scores.get(axis), (int, float)):
                bucket[axis].append(float(scores[axis]))

    rows = []
    k_min = max(1, int(k_min))
    for health_type, b in agg.items():
        if b["count"] < k_min:
            continue
        rows.append({
            "healthType": health_type,
            "count": b["count"],
            "meanScores": {
                axis: (round(float(np.mean(b[axis])), 2) if b[axis] else None) for axis in AXES
            },
        })
    rows.sort(key=lambda r: (-r["count"], r["healthType"]))
    return {"k_min": k_min, "count_groups": len(rows), "total": len(assessments), "rows": rows}
