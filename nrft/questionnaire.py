from __future__ import annotations
import json
from pathlib import Path
from typing import Optional
from sqlalchemy.orm import Session
from .models_db import Question, QuestionOption, QuestionType, SurveyTemplate

_TEMPLATE_PATH = Path(__file__).resolve().parent / "nrft_intake_template.json"

def load_schema(path: Optional[Path] = None) -> dict:
    return json.loads((path or _TEMPLATE_PATH).read_text(encoding="utf-8"))

def build_template(schema: dict, pharmacy_id: Optional[str] = None) -> SurveyTemplate:
    """Turn a template schema into unsaved ORM rows; orders are 1-based."""
    template = SurveyTemplate(
        name=schema["name"],
        description=schema.get("description"),
        version=int(schema.get("version", 1)),
        pharmacy_id=pharmacy_id,
        is_active=True,
    )
    for q_idx, q in enumerate(schema.get("questions", []), start=1):
        question = Question(
            category=q["category"],
            text=q["text"],
            type=QuestionType(q.get("type", "SINGLE")),
            order=q_idx,
        )
        for o_idx, o in enumerate(q.get("options", []), start=1):
            question.options.append(QuestionOption(text=o["text"], order=o_idx, impact=o.get("impact") or {}))
        template.questions.append(question)
    return template

def seed_template(db: Session, pharmacy_id: Optional[str] = None, schema: Optional[dict] = None) -> SurveyTemplate:
    template = build_template(schema or load_schema(), pharmacy_id)
    db.add(template)
    db.commit()
    db.refresh(template)
    return template
