from __future__ import annotations  # Deterministic prompt builders for every gateway operation

import json
from textwrap import dedent
from typing import Dict, List, Optional, Sequence

from .models import AnswerAnalysis, DangerZone, JobData, QAItem

Messages = List[Dict[str, str]]

SYSTEM_INTERVIEWER = (
    "You are an experienced hiring manager conducting a structured mock interview. "
    "Stay professional, concise and specific to the role."
)
SYSTEM_ANALYST = "You are an expert recruiter who extracts structured data from job descriptions."
SYSTEM_EVALUATOR = "You are an interview coach who evaluates candidate answers fairly and precisely."

FOLLOW_UP_TEMPLATES = {
    "missing_required_skill": (
        "Can you describe a specific project where you applied {skill}? "
        "What was your role and what was the outcome?"
    ),
    "vague_response": (
        "Could you walk me through a concrete example of that? "
        "What exactly did you do and what was the result?"
    ),
    "poor_situational_judgment": (
        "If you faced that situation again, what would you do differently and why?"
    ),
    "value_misalignment": (
        "How do you see your way of working aligning with the values of this company?"
    ),
}


def _messages(system: str, user: str) -> Messages:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def _job_block(job: JobData) -> str:  # Compact job summary embedded in prompts
    return json.dumps(job.model_dump(), ensure_ascii=False)


def parse_job_description(text: str) -> Messages:
    return _messages(
        SYSTEM_ANALYST,
        dedent(
            """
            Parse the job description below and extract its structure.

            Respond with a JSON object containing:
            - jobTitle: the position title.
            - company: the hiring company name.
            - requiredSkills: list of must-have skills.
            - preferredSkills: list of nice-to-have skills.
            - responsibilities: list of key responsibilities.
            - qualifications: list of qualifications.
            - companyValues: list of stated company values or culture traits.
            Use empty lists for anything the description does not mention.
            Return only JSON without markdown fences or commentary.

            Job description:
            """
        ).strip()
        + "\n"
        + text,
    )


def generate_questions(job: JobData, count: int) -> Messages:
    return _messages(
        SYSTEM_INTERVIEWER,
        dedent(
            f"""
            Generate exactly {count} interview questions for the role described below.
            Mix technical, behavioral and situational questions, each targeting one skill
            that matters for the role.

            Role data: {_job_block(job)}

            Respond with a JSON object {{"questions": [...]}} where each item contains:
            - id: short identifier such as "q1".
            - text: the question as it would be asked aloud.
            - type: one of technical, behavioral, situational, general.
            - skill: the primary skill being assessed.
            - difficulty: one of easy, medium, hard.
            Return only JSON without markdown fences or commentary.
            """
        ).strip(),
    )


def analyze_answer(question: str, answer: str, job: JobData, *, skill: str = "General") -> Messages:
    return _messages(
        SYSTEM_EVALUATOR,
        dedent(
            f"""
            Evaluate the candidate answer for the interview question below.

            Role data: {_job_block(job)}
            Skill assessed: {skill}
            Question: {question}
            Answer: {answer}

            Respond with a JSON object containing:
            - strengths: list of concrete strengths in the answer.
            - weaknesses: list of concrete weaknesses.
            - missingCompetencies: list of expected competencies the answer did not show.
            - score: number from 1 to 10.
            - needsFollowUp: true when a follow-up question would clarify the answer.
            Return only JSON without markdown fences or commentary.
            """
        ).strip(),
    )


def generate_follow_up(
    question: str,
    answer: str,
    analysis: Optional[AnswerAnalysis],
    job: JobData,
) -> Messages:
    gaps = ""
    if analysis is not None:
        weaknesses = "; ".join(analysis.weaknesses) or "none"
        missing = "; ".join(analysis.missing_competencies) or "none"
        gaps = f"Weaknesses noted: {weaknesses}\nMissing competencies: {missing}"
    hint = targeted_hint(analysis.danger_zones if analysis else [])
    return _messages(
        SYSTEM_INTERVIEWER,
        dedent(
            f"""
            Ask one follow-up question about the candidate answer below. Dig into the weakest
            part of the answer. Reply with the question only, without labels or quotes.

            Role: {job.title} at {job.company}
            Original question: {question}
            Candidate answer: {answer}
            """
        ).strip()
        + ("\n" + gaps if gaps else "")
        + ("\nSuggested angle: " + hint if hint else ""),
    )


def targeted_hint(zones: Sequence[DangerZone]) -> Optional[str]:
    """Template follow-up for the most severe danger zone, if any."""

    ranked = sorted(zones, key=lambda zone: {"high": 0, "medium": 1, "low": 2}[zone.severity])
    for zone in ranked:
        template = FOLLOW_UP_TEMPLATES.get(zone.type)
        if template:
            return template.format(skill=zone.skill)
    return None


def generate_final_pair(job: JobData) -> Messages:
    return _messages(
        SYSTEM_INTERVIEWER,
        dedent(
            f"""
            Write the two closing questions for an interview for {job.title} at {job.company}.
            1. A classic closing question interviewers commonly ask.
            2. A curveball question that tests creative thinking under pressure.

            Reply in exactly this format and nothing else:
            1. <classic question>
            2. <curveball question>
            """
        ).strip(),
    )


def generate_feedback_report(job: JobData, items: Sequence[QAItem]) -> Messages:
    transcript = [
        {
            "question": item.question,
            "category": item.category,
            "skill": item.skill,
            "followUp": item.is_follow_up,
            "answer": item.answer,
            "score": item.analysis.score if item.analysis else None,
            "dangerZones": [zone.type for zone in item.analysis.danger_zones] if item.analysis else [],
        }
        for item in items
    ]
    return _messages(
        SYSTEM_EVALUATOR,
        dedent(
            f"""
            Write a feedback report for the completed mock interview below.

            Role data: {_job_block(job)}
            Transcript: {json.dumps(transcript, ensure_ascii=False)}

            Respond with a JSON object containing:
            - overallScore: number from 0 to 100.
            - summary: two or three sentences of overall feedback.
            - strengths: list of key strengths.
            - areasForImprovement: list of areas to improve.
            - dangerZones: list of serious concerns a real interviewer would hold against the candidate.
            - dangerZoneRisk: one of low, medium, high.
            - questionFeedback: list of objects with question, score (0-100), strengths, improvements.
            - nextSteps: list of concrete practice recommendations.
            - practiceQuestions: list of questions worth rehearsing.
            Return only JSON without markdown fences or commentary.
            """
        ).strip(),
    )


__all__ = [
    "FOLLOW_UP_TEMPLATES",
    "Messages",
    "analyze_answer",
    "generate_feedback_report",
    "generate_final_pair",
    "generate_follow_up",
    "generate_questions",
    "parse_job_description",
    "targeted_hint",
]
