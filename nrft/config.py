from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
SURVEY_APP_URL = os.getenv("SURVEY_APP_URL", "http://localhost:5173").strip().rstrip("/")
# Comma separated; the survey client's origin is allowed by default.
CORS_ORIGINS = [o.strip().rstrip("/") for o in os.getenv("CORS_ORIGINS", SURVEY_APP_URL).split(",") if o.strip()]
SESSION_TTL_HOURS = float(os.getenv("SESSION_TTL_HOURS", "24"))
# Fetch-by-token returns raw option impacts unless this is switched off.
EXPOSE_OPTION_IMPACTS = os.getenv("EXPOSE_OPTION_IMPACTS", "true").strip().lower() not in {"0", "false", "no"}

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip() or None
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash").strip()
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "30"))

AXES = ["Sleep", "Digestion", "Energy", "Stress", "Immunity"]
SCORE_MIN = 0
SCORE_MAX = 100
BASELINE_SCORE = 100

SURVEY_CHANNELS = ["WEB", "EMAIL", "SMS"]
REMINDER_CHANNELS = ["SMS", "EMAIL", "CALL"]


def survey_url_for(token: str) -> str:
    return f"{SURVEY_APP_URL}/survey/{token}"
