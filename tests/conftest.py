from __future__ import annotations

from types import SimpleNamespace
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from nrft import db as database
from nrft.models_db import Patient, Pharmacist, Pharmacy
from nrft.questionnaire import seed_template


@pytest.fixture
def engine(tmp_path):
    engine = database.init_db(f"sqlite:///{tmp_path / 'nrft-test.sqlite'}")
    database.create_tables()
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db):
    pharmacy = Pharmacy(name="Green Cross Pharmacy")
    other_pharmacy = Pharmacy(name="Other Pharmacy")
    db.add_all([pharmacy, other_pharmacy])
    db.flush()

    lead = Pharmacist(pharmacy_id=pharmacy.id, name="Kim")
    colleague = Pharmacist(pharmacy_id=pharmacy.id, name="Lee")
    retired = Pharmacist(pharmacy_id=pharmacy.id, name="Park", is_active=False)
    outsider = Pharmacist(pharmacy_id=other_pharmacy.id, name="Choi")
    patient = Patient(pharmacy_id=pharmacy.id, name="홍길동", display_name="길동", phone_last4="5678", birth_year=1991)
    foreign_patient = Patient(pharmacy_id=other_pharmacy.id, name="김철수", display_name="철수")
    db.add_all([lead, colleague, retired, outsider, patient, foreign_patient])
    db.commit()

    template = seed_template(db)
    return SimpleNamespace(
        pharmacy_id=pharmacy.id,
        other_pharmacy_id=other_pharmacy.id,
        pharmacist_id=lead.id,
        colleague_id=colleague.id,
        retired_id=retired.id,
        outsider_id=outsider.id,
        patient_id=patient.id,
        foreign_patient_id=foreign_patient.id,
        template_id=template.id,
        template=template,
    )


@pytest.fixture
def answers_for() -> Callable[..., list]:
    """Build an answers payload from {category: [option index, ...]}."""

    def _make(template, picks: dict) -> list:
        answers = []
        for question in sorted(template.questions, key=lambda q: q.order):
            if question.category not in picks:
                continue
            options = sorted(question.options, key=lambda o: o.order)
            answers.append({
                "question_id": question.id,
                "option_ids": [options[i].id for i in picks[question.category]],
            })
        return answers

    return _make


@pytest.fixture
def client(engine):
    from nrft.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict]:
    def _make(pharmacist_id: str) -> dict:
        return {"Authorization": f"Bearer {pharmacist_id}"}

    return _make
