from __future__ import annotations
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional
import numpy as np
from .config import AXES, BASELINE_SCORE, SCORE_MAX, SCORE_MIN

DEFAULT_HEALTH_TYPE = "Balanced Harmony"

# Lowest axis -> health type label.
HEALTH_TYPE_BY_AXIS = {
    "Sleep": "수면 부족형 (Restless Owl)",
    "Digestion": "소화 민감형 (Sensitive Stomach)",
    "Energy": "에너지 고갈형 (Burnout Fire)",
    "Stress": "스트레스 과다형 (Tension Wire)",
    "Immunity": "면역 저하형 (Delicate Shield)",
}

RECOMMENDATIONS = {
    "에너지 고갈형 (Burnout Fire)": {
        "lifestyle": "짧은 휴식(5분) × 4회, 오전 산책으로 부신 리듬 활성화",
        "product": "B-콤플렉스 + 비타민C 복합제",
        "message": "지치고 무기력한 상태이니 작은 루틴을 쌓아 회복 속도를 높입니다.",
    },
    "수면 부족형 (Restless Owl)": {
        "lifestyle": "수면 위생(자기 전 화면 금지, 블루라이트 차단)",
        "product": "마그네슘+GABA 복합제",
        "message": "수면 패턴을 재정비하면 다음날 컨디션이 30% 이상 개선됩니다.",
    },
    "소화 민감형 (Sensitive Stomach)": {
        "lifestyle": "식사 20분 이상 천천히, 야채 중심 식단",
        "product": "프리/프로바이오틱스 + 소화효소",
        "message": "소화가 정상화되어야 전신 에너지 흐름도 회복됩니다.",
    },
    "스트레스 과다형 (Tension Wire)": {
        "lifestyle": "깊은 호흡 2회, 점심 직후 짧은 산책",
        "product": "아답토젠 + L-테아닌",
        "message": "스트레스를 문진하며 풀어내면 몸 전체 긴장이 완화됩니다.",
    },
    "면역 저하형 (Delicate Shield)": {
        "lifestyle": "철저한 수면/수분+손 위생, 휴식 중심 데일리 루틴",
        "product": "비타민C/D + 아연 분말",
        "message": "면역 보강이 최우선이며, 과로/과음은 잠시 멈춰야 합니다.",
    },
}

GENERIC_RECOMMENDATION = {
    "lifestyle": "일상에서 작은 루틴부터 시작하세요.",
    "product": "기초 영양제(멀티비타민/종합오메가) 추천",
    "message": "전반적으로 균형을 잡으면 회복 속도가 빨라집니다.",
}


def clamp(value: float) -> float:
    return max(SCORE_MIN, min(SCORE_MAX, value))


def round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def _as_delta(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return value


def unique_in_order(option_ids: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for oid in option_ids:
        if oid not in seen:
            seen.add(oid)
            out.append(oid)
    return out


def accumulate(
    selected_option_ids: Iterable[str],
    impacts_by_option: Mapping[str, Mapping[str, Any]],
    clamp_each_step: bool = True,
) -> Dict[str, Dict[str, float]]:
    """Fold the selected options' impact maps over the all-100 baseline.

    Returns ``{"scores": ..., "extended": ...}``. ``scores`` always holds the
    five canonical axes; ``extended`` collects any other impact keys (matrix
    axes) on their own 100 baseline and never feeds classification.

    With ``clamp_each_step`` (the default) every single addition is clamped to
    [0, 100] as it is applied, so the result follows the order in which the
    ids are given. Otherwise deltas are summed per axis and clamped once.
    """
    canonical = {axis: float(BASELINE_SCORE) for axis in AXES}
    extended: Dict[str, float] = {}

    for oid in selected_option_ids:
        impact = impacts_by_option.get(oid)
        if not impact:
            continue
        for key, value in impact.items():
            delta = _as_delta(value)
            if delta is None:
                continue
            target = canonical if key in canonical else extended
            current = target.get(key, float(BASELINE_SCORE)) + delta
            target[key] = clamp(current) if clamp_each_step else current

    if not clamp_each_step:
        canonical = {k: clamp(v) for k, v in canonical.items()}
        extended = {k: clamp(v) for k, v in extended.items()}

    return {
        "scores": {k: _tidy(v) for k, v in canonical.items()},
        "extended": {k: _tidy(v) for k, v in extended.items()},
    }


def _tidy(value: float):
    # Integer deltas keep integer scores in the stored JSON.
    return int(value) if float(value).is_integer() else value


def compute_scores(
    selected_option_ids: Iterable[str],
    impacts_by_option: Mapping[str, Mapping[str, Any]],
    clamp_each_step: bool = True,
) -> Dict[str, float]:
    return accumulate(selected_option_ids, impacts_by_option, clamp_each_step)["scores"]


def classify(scores: Mapping[str, float]) -> str:
    lowest_axis = None
    lowest = None
    for axis in AXES:
        value = scores.get(axis)
        if value is None:
            continue
        if lowest is None or value < lowest:
            lowest_axis, lowest = axis, value
    return HEALTH_TYPE_BY_AXIS.get(lowest_axis, DEFAULT_HEALTH_TYPE)


def focus_axes(scores: Mapping[str, float], n: int = 2) -> List[dict]:
    ranked = sorted(AXES, key=lambda axis: (scores[axis], AXES.index(axis)))
    return [{"axis": axis, "score": scores[axis]} for axis in ranked[:n]]


def build_clusters(scores: Mapping[str, float]) -> Dict[str, float]:
    values = np.array([scores[axis] for axis in AXES], dtype=float)
    return {
        "innerBalance": round_half_up(float(np.mean(values))),
        "energy": scores["Energy"],
        "resilience": round_half_up(min(scores["Immunity"], scores["Stress"])),
        "digestion": scores["Digestion"],
        "rest": scores["Sleep"],
    }


def build_recommendations(health_type: str) -> Dict[str, str]:
    return dict(RECOMMENDATIONS.get(health_type, GENERIC_RECOMMENDATION))


def derive(scores: Mapping[str, float], health_type: str) -> dict:
    return {
        "clusters": build_clusters(scores),
        "recommendations": build_recommendations(health_type),
    }


def analyze(
    selected_option_ids: Iterable[str],
    impacts_by_option: Mapping[str, Mapping[str, Any]],
    clamp_each_step: bool = True,
) -> dict:
    acc = accumulate(selected_option_ids, impacts_by_option, clamp_each_step)
    scores = acc["scores"]
    health_type = classify(scores)
    derived = derive(scores, health_type)
    return {
        "scores": scores,
        "extended_scores": acc["extended"],
        "health_type": health_type,
        "focus_axes": focus_axes(scores),
        "clusters": derived["clusters"],
        "recommendations": derived["recommendations"],
    }
