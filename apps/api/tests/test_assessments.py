import json

from conftest import FakeLLM
from coursegen.models.assessment import SectionQuiz, SubtopicFlashcard
from coursegen.services.assessments import AssessmentGenerator
from coursegen.services.embedding_index import SectionContent, SubtopicContent


def _question(i, **overrides):
    q = {"question": f"Q{i}?", "options": ["a", "b", "c", "d"], "correct_index": i % 4, "explanation": "e"}
    q.update(overrides)
    return q


def _section():
    return SectionContent(
        section_id=1,
        title="Basics",
        subtopics=[SubtopicContent(subtopic_id=10, title="Variables", text="# Variables")],
    )


def test_quiz_keeps_valid_questions_and_caps_at_eight(db, course):
    questions = [_question(i) for i in range(10)] + [
        _question(99, options=["a", "b"]),
        _question(98, correct_index=4),
        _question(97, correct_index=True),
    ]
    llm = FakeLLM([json.dumps({"questions": questions})])

    quiz = AssessmentGenerator(db, llm).generate_section_quiz(course.id, _section())

    assert quiz.title == "Basics Quiz"
    assert len(quiz.questions) == 8
    assert all(len(q["options"]) == 4 for q in quiz.questions)


def test_too_few_valid_questions_skips_the_quiz(db, course):
    llm = FakeLLM([json.dumps({"questions": [_question(i) for i in range(4)]})])
    assert AssessmentGenerator(db, llm).generate_section_quiz(course.id, _section()) is None
    assert db.query(SectionQuiz).count() == 0


def test_non_json_reply_degrades_to_nothing(db, course):
    llm = FakeLLM(["I cannot write a quiz today.", "nor flashcards"])
    gen = AssessmentGenerator(db, llm)
    assert gen.generate_section_quiz(course.id, _section()) is None
    assert gen.generate_flashcards(course.id, 10, "Variables", "# Variables", "") == []


def test_regenerating_flashcards_replaces_previous_set(db, course):
    first = {"flashcards": [{"front": "A?", "back": "a"}, {"front": "B?", "back": "b"}, {"front": "", "back": "x"}]}
    second = {"flashcards": [{"front": "C?", "back": "c"}]}
    llm = FakeLLM([json.dumps(first), json.dumps(second)])
    gen = AssessmentGenerator(db, llm)

    assert [c.front for c in gen.generate_flashcards(course.id, 10, "Variables", "# V", "[00:00] hi")] == ["A?", "B?"]
    gen.generate_flashcards(course.id, 10, "Variables", "# V", "[00:00] hi")

    rows = db.query(SubtopicFlashcard).all()
    assert [(r.idx, r.front, r.back) for r in rows] == [(0, "C?", "c")]


def test_quiz_requests_run_through_json_mode(db, course):
    llm = FakeLLM()
    AssessmentGenerator(db, llm).generate_for_course(course.id, [_section()], {10: "[00:00] narration"})

    assert [c["format"] for c in llm.calls] == ["json", "json"]
    assert "narration" in llm.calls[1]["user"]
