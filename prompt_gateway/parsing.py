"""Pure helpers that turn provider text into typed values.

None of these functions perform I/O. Each returns a conservative value (or
raises ``ParseError`` where the caller must decide) instead of letting a
malformed reply escape the gateway.
"""
from __future__ import annotations

import json
import re
from statistics import mean
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from errors import ParseError

from .models import AnswerAnalysis, Category, DangerZone, FinalPair, GeneratedQuestion, JobData, Severity

CATEGORIES: Tuple[str, ...] = ("technical", "behavioral", "situational", "general")
DIFFICULTIES: Tuple[str, ...] = ("easy", "medium", "hard")

_TITLE_RE = re.compile(r"(?:Job Title|Role|Position|Title)\s*:?\s*(.+)", re.IGNORECASE)
_COMPANY_RE = re.compile(r"\b(?:at|for)\s+([A-Z][\w&.-]*(?:\s+(?:&\s+)?[A-Z][\w&.-]*)*)")
_LABEL_RE = re.compile(
    r"^\s*(?:\*\*)?\s*(?:interviewer|follow[- ]?up(?:\s+question)?|question|q)\s*(?:\d+)?\s*[:\-–—]\s*(?:\*\*)?\s*",
    re.IGNORECASE,
)
_QUOTES = "\"'“”‘’`"
_FINAL_PAIR_RE = re.compile(r"1[.)]\s*(.+?)\s*(?:^|\s)2[.)]\s*(.+)", re.DOTALL | re.MULTILINE)
_TRAILING_ITEM_RE = re.compile(r"\s(?:3|4|5)[.)]\s.*", re.DOTALL)

SEVERITY_WEIGHTS = {"low": 1, "medium": 2, "high": 3}


def extract_title_and_company(text: str) -> Tuple[Optional[str], Optional[str]]:
    """Best-effort guess of job title and company from raw description text."""

    title_match = _TITLE_RE.search(text or "")
    company_match = _COMPANY_RE.search(text or "")
    title = title_match.group(1).strip().rstrip(".,;") if title_match else None
    company = company_match.group(1).strip().rstrip(".,;") if company_match else None
    return title or None, company or None


def first_balanced_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in ``text``, honouring JSON strings."""

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse a JSON object, falling back to the first balanced span in prose."""

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        data = None
    if isinstance(data, dict):
        return data
    span = first_balanced_object(text or "")
    if span is None:
        raise ParseError("No JSON object found in provider reply")
    try:
        data = json.loads(span)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Malformed JSON object: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError("Provider reply is not a JSON object")
    return data


def parse_question_list(text: str) -> List[Any]:
    """Accept a bare JSON array or an object wrapping one under ``questions``."""

    try:
        data: Any = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        data = None
    if data is None:
        start, end = (text or "").find("["), (text or "").rfind("]")
        if start != -1 and end > start:
            try:
                data = json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                data = None
    if data is None:
        data = parse_json_object(text)
    if isinstance(data, dict):
        data = data.get("questions")
    if not isinstance(data, list):
        raise ParseError("Provider reply has no question list")
    return data


def as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, Iterable) and not isinstance(value, (bytes, dict)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] not in (None, ""):
            return data[key]
    return None


def normalize_job_data(data: Dict[str, Any], raw_text: str) -> JobData:
    guessed_title, guessed_company = extract_title_and_company(raw_text)
    title = _pick(data, "jobTitle", "title", "job_title")
    company = _pick(data, "company", "companyName", "company_name")
    return JobData(
        title=str(title).strip() if title else (guessed_title or "Unknown Position"),
        company=str(company).strip() if company else (guessed_company or "Unknown Company"),
        required_skills=as_str_list(_pick(data, "requiredSkills", "required_skills")),
        preferred_skills=as_str_list(_pick(data, "preferredSkills", "preferred_skills")),
        responsibilities=as_str_list(_pick(data, "responsibilities")),
        qualifications=as_str_list(_pick(data, "qualifications")),
        company_values=as_str_list(_pick(data, "companyValues", "company_values")),
    )


def normalize_question(raw: Any, index: int) -> Optional[GeneratedQuestion]:
    if isinstance(raw, str):
        raw = {"text": raw}
    if not isinstance(raw, dict):
        return None
    text = _pick(raw, "text", "question", "questionText")
    if not text or not str(text).strip():
        return None
    category = str(_pick(raw, "type", "category") or "general").strip().lower()
    difficulty = str(_pick(raw, "difficulty") or "medium").strip().lower()
    skill = _pick(raw, "skill", "primarySkill", "primary_skill")
    return GeneratedQuestion(
        id=str(_pick(raw, "id") or f"q{index + 1}"),
        text=str(text).strip(),
        type=category if category in CATEGORIES else "general",  # type: ignore[arg-type]
        skill=str(skill).strip() if skill else "General",
        difficulty=difficulty if difficulty in DIFFICULTIES else "medium",  # type: ignore[arg-type]
    )


def analysis_score(value: Any) -> float:
    """Coerce a per-answer score onto 1-10; missing or invalid reads as 5."""

    try:
        score = float(value)
    except (TypeError, ValueError):
        return 5.0
    if score != score:
        return 5.0
    if 10.0 < score <= 100.0:
        score = score / 10.0
    return round(min(10.0, max(1.0, score)), 1)


def normalize_analysis(data: Dict[str, Any]) -> AnswerAnalysis:
    needs = _pick(data, "needsFollowUp", "needs_follow_up", "followUpNeeded")
    if isinstance(needs, str):
        needs = needs.strip().lower() in ("true", "yes", "1")
    return AnswerAnalysis(
        strengths=as_str_list(data.get("strengths")),
        weaknesses=as_str_list(data.get("weaknesses")),
        missing_competencies=as_str_list(_pick(data, "missingCompetencies", "missing_competencies")),
        score=analysis_score(data.get("score")),
        needs_follow_up=bool(needs) if needs is not None else False,
    )


def clean_follow_up(text: str) -> Optional[str]:
    """Strip interviewer labels and wrapping quotes from a follow-up reply."""

    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        return None
    candidate = " ".join(lines)
    previous = None
    while previous != candidate:
        previous = candidate
        candidate = _LABEL_RE.sub("", candidate).strip()
        candidate = candidate.strip(_QUOTES).strip()
        candidate = candidate.strip("*").strip()
    candidate = re.sub(r"\s+", " ", candidate)
    return candidate or None


def parse_final_pair(text: str) -> Optional[FinalPair]:
    match = _FINAL_PAIR_RE.search(text or "")
    if not match:
        return None
    classic = clean_follow_up(match.group(1))
    curveball = clean_follow_up(_TRAILING_ITEM_RE.sub("", match.group(2)))
    if not classic or not curveball:
        return None
    return FinalPair(classic=classic, curveball=curveball)


def normalize_score(value: Any) -> Optional[float]:
    """Convert a provider score to the canonical 0-100 scale.

    Values up to 10 are read as a 0-10 score; larger values as 0-100.
    """

    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score or score < 0:
        return None
    if score <= 10.0:
        score *= 10.0
    return round(min(100.0, score), 1)


def mean_score(scores: Sequence[float]) -> float:
    """Mean of 1-10 per-answer scores expressed on 0-100."""

    if not scores:
        return 0.0
    return round(mean(scores) * 10.0, 1)


def normalize_risk(value: Any) -> Optional[Severity]:
    if not isinstance(value, str):
        return None
    lowered = value.strip().lower()
    for level in ("high", "medium", "low"):
        if lowered.startswith(level):
            return level  # type: ignore[return-value]
    return None


def identify_danger_zones(
    *,
    category: Category,
    skill: str,
    answer: str,
    analysis: AnswerAnalysis,
    job: JobData,
) -> List[DangerZone]:
    """Rule-based gap detection layered on top of the provider's analysis."""

    zones: List[DangerZone] = []
    skill_lower = skill.lower()

    if category == "technical" and analysis.missing_competencies:
        related = [
            item
            for item in job.required_skills
            if item.lower() in skill_lower or skill_lower in item.lower()
        ]
        if related:
            zones.append(
                DangerZone(
                    type="missing_required_skill",
                    skill=skill,
                    severity="high",
                    description=f"Missing demonstration of {skill} which is a required skill for this role.",
                )
            )

    if category == "behavioral" and any(
        marker in weakness.lower()
        for weakness in analysis.weaknesses
        for marker in ("specific", "example", "detail")
    ):
        zones.append(
            DangerZone(
                type="vague_response",
                skill=skill,
                severity="medium",
                description="Response lacks specific examples or details that demonstrate the competency.",
            )
        )

    if category == "situational" and analysis.score < 6:
        zones.append(
            DangerZone(
                type="poor_situational_judgment",
                skill=skill,
                severity="high",
                description="Response indicates potential issues with situational judgment in this area.",
            )
        )

    if job.company_values and not any(value.lower() in answer.lower() for value in job.company_values):
        zones.append(
            DangerZone(
                type="value_misalignment",
                skill="Company Culture",
                severity="medium",
                description="Response does not demonstrate alignment with company values.",
            )
        )
    return zones


def danger_zone_risk(zones: Sequence[DangerZone]) -> Optional[Severity]:
    """Collapse zone severities into one risk level (None when no zones)."""

    if not zones:
        return None
    total = sum(SEVERITY_WEIGHTS[zone.severity] for zone in zones)
    score = total / (len(zones) * 3) * 10
    if score >= 7:
        return "high"
    if score >= 4:
        return "medium"
    return "low"


__all__ = [
    "analysis_score",
    "as_str_list",
    "clean_follow_up",
    "danger_zone_risk",
    "extract_title_and_company",
    "first_balanced_object",
    "identify_danger_zones",
    "mean_score",
    "normalize_analysis",
    "normalize_job_data",
    "normalize_question",
    "normalize_risk",
    "normalize_score",
    "parse_final_pair",
    "parse_json_object",
    "parse_question_list",
]
