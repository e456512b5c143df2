from __future__ import annotations
import logging
from typing import Any, Dict
import httpx
from . import config
from .errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
FALLBACK_NOTE = "AI 상담 스크립트를 생성할 수 없습니다."

AXIS_LABELS_KO = {"Sleep": "수면", "Digestion": "소화", "Energy": "활력", "Stress": "스트레스", "Immunity": "면역"}


def build_prompt(context: Dict[str, Any]) -> str:
    scores = context.get("scores") or {}
    score_lines = "\n".join(f"- {AXIS_LABELS_KO[a]}: {scores.get(a)}" for a in AXIS_LABELS_KO)
    return (
        "당신은 전문적이고 공감 능력이 뛰어난 약사 보조 AI입니다.\n"
        "아래 환자 정보를 바탕으로 약사가 환자에게 직접 읽어주거나 참고할 수 있는\n"
        "전문 상담 스크립트(150자 내외)를 한국어로 작성해주세요.\n\n"
        "[환자 정보]\n"
        f"- 이름/닉네임: {context.get('patient_name')}\n"
        f"- 연령대: {context.get('age_group')}\n"
        f"- 성별: {context.get('gender')}\n\n"
        "[NRFT 건강 점수 (0-100)]\n"
        f"{score_lines}\n\n"
        "[분석된 건강 타입]\n"
        f"{context.get('health_type')}\n\n"
        "[작성 가이드]\n"
        "1. 가장 점수가 낮은 1~2개 항목에 집중하여 설명하세요.\n"
        "2. 환자의 불편함에 공감하며 시작하세요.\n"
        "3. 구체적인 생활 습관 교정 1가지와 영양소 및 추천 제품 1가지를 추천하세요.\n"
        "4. 의료적 진단(병명 확정)은 피하고, 건강 관리를 위한 조언 어조를 유지하세요.\n"
        "5. \"약사\"가 \"환자\"에게 말하는 존댓말 구어체로 작성하세요.\n"
    )


def _extract_text(payload: dict) -> str:
    for candidate in payload.get("candidates") or []:
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts).strip()
        if text:
            return text
    return ""


def generate_consultation_note(context: Dict[str, Any]) -> str:
    if not config.GEMINI_API_KEY:
        raise ServiceUnavailableError("AI consultation service is not configured")

    url = GEMINI_URL.format(model=config.GEMINI_MODEL)
    body = {"contents": [{"parts": [{"text": build_prompt(context)}]}]}
    try:
        resp = httpx.post(
            url,
            params={"key": config.GEMINI_API_KEY},
            json=body,
            timeout=config.AI_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("AI consultation request failed: %s", exc.__class__.__name__)
        raise ServiceUnavailableError("AI consultation service unavailable") from exc

    return _extract_text(resp.json()) or FALLBACK_NOTE
