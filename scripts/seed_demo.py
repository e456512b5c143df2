"""Seed a demo pharmacy for local runs.

Creates (or reuses) the demo pharmacy, one pharmacist, one patient, the
built-in NRFT intake template and a PENDING session with a fixed token so the
survey page can be opened at ``/survey/demo-nrft-session``.
"""

from __future__ import annotations
from datetime import timedelta
from sqlalchemy import select

from nrft import db as database
from nrft.clock import utc_now
from nrft.config import SESSION_TTL_HOURS, survey_url_for
from nrft.models_db import (
    Assessment,
    Patient,
    Pharmacist,
    PharmacistRole,
    Pharmacy,
    SessionStatus,
    SurveySession,
    SurveyTemplate,
)
from nrft.questionnaire import load_schema, seed_template

PHARMACY_NAME = "Demo Pharmacy"
DEMO_SESSION_TOKEN = "demo-nrft-session"

def main():
    database.init_db()
    database.create_tables()
    schema = load_schema()

    with database.SessionLocal() as db:
        pharmacy = db.scalars(select(Pharmacy).where(Pharmacy.name == PHARMACY_NAME)).first()
        if pharmacy is None:
            pharmacy = Pharmacy(name=PHARMACY_NAME)
            db.add(pharmacy)
            db.flush()
            db.add(Pharmacist(pharmacy_id=pharmacy.id, name="Demo Pharmacist", role=PharmacistRole.ADMIN))

        patient = db.scalars(
            select(Patient).where(Patient.pharmacy_id == pharmacy.id, Patient.display_name == "홍길동")
        ).first()
        if patient is None:
            patient = Patient(
                pharmacy_id=pharmacy.id,
                name="홍길동",
                display_name="홍길동",
                phone_last4="5678",
                gender="male",
                birth_year=1991,
            )
            db.add(patient)
        db.commit()

        template = db.scalars(
            select(SurveyTemplate).where(SurveyTemplate.name == schema["name"], SurveyTemplate.is_active == True)
        ).first()
        if template is None:
            template = seed_template(db, schema=schema)

        session = db.scalars(select(SurveySession).where(SurveySession.token == DEMO_SESSION_TOKEN)).first()
        if session is None:
            session = SurveySession(
                token=DEMO_SESSION_TOKEN,
                pharmacy_id=pharmacy.id,
                patient_id=patient.id,
                template_id=template.id,
            )
            db.add(session)
        # A session that already produced an assessment stays COMPLETED.
        if session.id is not None and db.scalar(select(Assessment.id).where(Assessment.session_id == session.id)):
            print("Demo session already has an assessment; issue a new session through the API.")
        else:
            session.status = SessionStatus.PENDING
            session.completed_at = None
            session.expires_at = utc_now() + timedelta(hours=SESSION_TTL_HOURS)
        db.commit()

        pharmacist_id = db.scalar(select(Pharmacist.id).where(Pharmacist.pharmacy_id == pharmacy.id))
        print("Demo data ready.")
        print(f"  - Pharmacist ID (Bearer): {pharmacist_id}")
        print(f"  - Template ID: {template.id}")
        print(f"  - Patient ID: {patient.id}")
        print(f"  - Survey URL: {survey_url_for(session.token)}")

if __name__ == "__main__":
    main()
