from __future__ import annotations

import pytest

from errors import ParseError
from prompt_gateway import AnswerAnalysis, DangerZone, JobData
from prompt_gateway.parsing import (
    analysis_score,
    clean_follow_up,
    danger_zone_risk,
    extract_title_and_company,
    first_balanced_object,
    identify_danger_zones,
    mean_score,
    normalize_job_data,
    normalize_question,
    normalize_score,
    parse_final_pair,
    parse_json_object,
    parse_question_list,
)


def test_extract_title_and_company():
    title, company = extract_title_and_company("Position: Data Engineer\nJoin us at Northwind Traders today.")
    assert title == "Data Engineer"
    assert company == "Northwind Traders"


def test_extract_title_and_company_without_markers():
    assert extract_title_and_company("Senior Backend Engineer, Python, distributed systems") == (None, None)


def test_first_balanced_object_skips_prose_and_braces_in_strings():
    text = 'Sure! Here it is: {"summary": "uses {curly} braces", "nested": {"a": 1}} trailing }'
    assert first_balanced_object(text) == '{"summary": "uses {curly} braces", "nested": {"a": 1}}'
    assert first_balanced_object("no object here") is None


def test_parse_json_object_falls_back_to_span():
    assert parse_json_object('{"a": 1}') == {"a": 1}
    assert parse_json_object('Report:\n{"a": 2}\nThanks') == {"a": 2}
    with pytest.raises(ParseError):
        parse_json_object("I cannot help with that.")


def test_parse_question_list_shapes():
    assert parse_question_list('[{"text": "a"}]') == [{"text": "a"}]
    assert parse_question_list('{"questions": [{"text": "b"}]}') == [{"text": "b"}]
    assert parse_question_list('Here you go: [{"text": "c"}] enjoy') == [{"text": "c"}]
    with pytest.raises(ParseError):
        parse_question_list('{"items": []}')


def test_normalize_question_defaults():
    question = normalize_question({"question": "Why Rust?", "type": "Trivia", "difficulty": "extreme"}, 1)
    assert question.id == "q2"
    assert question.type == "general"
    assert question.difficulty == "medium"
    assert question.skill == "General"
    assert normalize_question({"text": "  "}, 0) is None
    assert normalize_question("Plain string question?", 0).text == "Plain string question?"


def test_normalize_job_data_defaults():
    job = normalize_job_data({}, "We need help with things")
    assert job.title == "Unknown Position"
    assert job.company == "Unknown Company"
    assert job.required_skills == []

    job = normalize_job_data({"requiredSkills": "Go"}, "Role: SRE at Initech")
    assert job.title == "SRE at Initech"
    assert job.company == "Initech"
    assert job.required_skills == ["Go"]


def test_clean_follow_up_strips_labels_and_quotes():
    assert clean_follow_up('Interviewer: "How did you measure success?"') == "How did you measure success?"
    assert clean_follow_up("**Follow-up question:** What broke first?") == "What broke first?"
    assert clean_follow_up("  \n ") is None
    assert clean_follow_up('""') is None


def test_parse_final_pair():
    pair = parse_final_pair("1. Why this company?\n2. What would you do with a day of free compute?")
    assert pair.classic == "Why this company?"
    assert pair.curveball == "What would you do with a day of free compute?"
    assert parse_final_pair("Why this company? And another one.") is None


@pytest.mark.parametrize(
    "raw, expected",
    [(7, 70.0), (7.5, 75.0), ("8", 80.0), (85, 85.0), (140, 100.0), (-3, None), (None, None), ("n/a", None)],
)
def test_normalize_score(raw, expected):
    assert normalize_score(raw) == expected


def test_analysis_score_clamps_and_defaults():
    assert analysis_score(None) == 5.0
    assert analysis_score(0) == 1.0
    assert analysis_score(12) == 1.2
    assert analysis_score(80) == 8.0
    assert analysis_score(9.5) == 9.5


def test_mean_score_is_scaled():
    assert mean_score([6, 8]) == 70.0
    assert mean_score([]) == 0.0


def test_identify_danger_zones_rules():
    job = JobData(required_skills=["Python"], company_values=["ownership"])
    weak = AnswerAnalysis(missing_competencies=["async IO"], weaknesses=["Lacks specific examples"], score=4)

    technical = identify_danger_zones(category="technical", skill="Python", answer="I take ownership", analysis=weak, job=job)
    assert [zone.type for zone in technical] == ["missing_required_skill"]

    behavioral = identify_danger_zones(category="behavioral", skill="Teamwork", answer="We did it", analysis=weak, job=job)
    assert [zone.type for zone in behavioral] == ["vague_response", "value_misalignment"]

    situational = identify_danger_zones(category="situational", skill="Triage", answer="ownership first", analysis=weak, job=job)
    assert [zone.type for zone in situational] == ["poor_situational_judgment"]


def test_danger_zone_risk_levels():
    high = DangerZone(type="missing_required_skill", skill="Python", severity="high", description="x")
    medium = DangerZone(type="vague_response", skill="Teamwork", severity="medium", description="y")
    low = DangerZone(type="value_misalignment", skill="Culture", severity="low", description="z")
    assert danger_zone_risk([]) is None
    assert danger_zone_risk([high, high]) == "high"
    assert danger_zone_risk([medium]) == "medium"
    assert danger_zone_risk([low]) == "low"
