from __future__ import annotations

from datetime import datetime, timedelta, timezone

from nrft.followup_engine import DEFAULT_FOLLOW_UPS, create_auto_follow_up, resolve_plan
from nrft.models_db import FollowUpStatus, FollowUpTemplate
from nrft.scoring_engine import HEALTH_TYPE_BY_AXIS

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_every_health_type_has_a_default_plan():
    assert set(DEFAULT_FOLLOW_UPS) == set(HEALTH_TYPE_BY_AXIS.values())


def test_default_plan_offsets(db):
    assert resolve_plan(db, HEALTH_TYPE_BY_AXIS["Digestion"])["offset_days"] == 10
    assert resolve_plan(db, HEALTH_TYPE_BY_AXIS["Sleep"])["offset_days"] == 7
    assert resolve_plan(db, "Balanced Harmony") is None


def test_template_row_overrides_default(db):
    label = HEALTH_TYPE_BY_AXIS["Stress"]
    db.add(FollowUpTemplate(health_type=label, checklist=["명상 일지"], offset_days=3))
    db.commit()
    assert resolve_plan(db, label) == {"checklist": ["명상 일지"], "offset_days": 3}


def test_create_auto_follow_up_is_scheduled(db):
    follow_up = create_auto_follow_up(db, "assessment-1", HEALTH_TYPE_BY_AXIS["Immunity"], now=NOW)
    assert follow_up.status == FollowUpStatus.SCHEDULED
    assert follow_up.next_visit_date == NOW + timedelta(days=7)
    assert follow_up.checklist == ["비타민C/D 복용", "수면·수분 확보"]
    assert follow_up in db.new


def test_create_auto_follow_up_skips_unknown_type(db):
    assert create_auto_follow_up(db, "assessment-1", "Balanced Harmony", now=NOW) is None
    assert not db.new


def test_template_row_with_same_day_offset(db):
    label = HEALTH_TYPE_BY_AXIS["Stress"]
    db.add(FollowUpTemplate(health_type=label, checklist=["당일 재방문"], offset_days=0))
    db.commit()
    assert resolve_plan(db, label)["offset_days"] == 0

    follow_up = create_auto_follow_up(db, "assessment-1", label, now=NOW)
    assert follow_up.next_visit_date == NOW
