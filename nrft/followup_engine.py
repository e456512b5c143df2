from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from .clock import utc_now
from .models_db import FollowUp, FollowUpStatus, FollowUpTemplate

logger = logging.getLogger(__name__)

DEFAULT_OFFSET_DAYS = 7

# Built-in defaults, used when no FollowUpTemplate row exists for the type.
DEFAULT_FOLLOW_UPS = {
    "에너지 고갈형 (Burnout Fire)": {
        "checklist": ["수면시간 기록", "카페인/운동 루틴 점검"],
        "offset_days": 7,
    },
    "수면 부족형 (Restless Owl)": {
        "checklist": ["취침 전 루틴 점검", "수면일지 확인"],
        "offset_days": 7,
    },
    "소화 민감형 (Sensitive Stomach)": {
        "checklist": ["식사일지 리뷰", "프로바이오틱스 복용 체크"],
        "offset_days": 10,
    },
    "스트레스 과다형 (Tension Wire)": {
        "checklist": ["호흡/명상 실천 여부", "카페인 제한 확인"],
        "offset_days": 7,
    },
    "면역 저하형 (Delicate Shield)": {
        "checklist": ["비타민C/D 복용", "수면·수분 확보"],
        "offset_days": 7,
    },
}


def resolve_plan(db: Session, health_type: str) -> Optional[dict]:
    row = db.scalars(select(FollowUpTemplate).where(FollowUpTemplate.health_type == health_type)).first()
    if row is not None:
        offset = row.offset_days if row.offset_days is not None else DEFAULT_OFFSET_DAYS
        return {"checklist": list(row.checklist or []), "offset_days": offset}
    default = DEFAULT_FOLLOW_UPS.get(health_type)
    if default is None:
        return None
    return {"checklist": list(default["checklist"]), "offset_days": default["offset_days"]}


def create_auto_follow_up(
    db: Session,
    assessment_id: str,
    health_type: str,
    now: Optional[datetime] = None,
) -> Optional[FollowUp]:
    """Schedule the health-type default follow-up. Adds to ``db`` without committing."""
    plan = resolve_plan(db, health_type)
    if plan is None:
        logger.info("No follow-up plan for health type %r; skipping", health_type)
        return None

    now = now or utc_now()
    follow_up = FollowUp(
        assessment_id=assessment_id,
        next_visit_date=now + timedelta(days=plan["offset_days"]),
        checklist=plan["checklist"],
        status=FollowUpStatus.SCHEDULED,
    )
    db.add(follow_up)
    logger.info("Auto follow-up scheduled for assessment %s in %s days", assessment_id, plan["offset_days"])
    return follow_up
