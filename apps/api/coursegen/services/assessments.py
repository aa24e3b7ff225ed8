# apps/api/coursegen/services/assessments.py
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import delete
from sqlalchemy.orm import Session

from coursegen.models.assessment import SectionQuiz, SubtopicFlashcard
from coursegen.services.embedding_index import SectionContent
from coursegen.services.llm.prompts import (
    FLASHCARDS_SYSTEM,
    FLASHCARDS_USER_TEMPLATE,
    QUIZ_SYSTEM,
    QUIZ_USER_TEMPLATE,
)
from coursegen.services.rate_limit import TokenBucket

logger = logging.getLogger(__name__)

QUIZ_MIN, QUIZ_MAX = 5, 8
MAX_CONTENT_CHARS = 6000


def _clip(s: str, max_chars: int) -> str:
    s = (s or "").strip()
    if len(s) <= max_chars:
        return s
    return s[:max_chars].rsplit(" ", 1)[0].strip()


def _valid_question(it: Any) -> Optional[dict[str, Any]]:
    if not isinstance(it, dict):
        return None
    q = it.get("question")
    opts = it.get("options")
    idx = it.get("correct_index")
    if not isinstance(q, str) or not q.strip():
        return None
    if not isinstance(opts, list) or len(opts) != 4:
        return None
    if not all(isinstance(o, str) and o.strip() for o in opts):
        return None
    if isinstance(idx, bool) or not isinstance(idx, int) or not 0 <= idx <= 3:
        return None
    return {
        "question": q.strip(),
        "options": [o.strip() for o in opts],
        "correct_index": idx,
        "explanation": str(it.get("explanation") or "").strip(),
    }


def _valid_card(it: Any) -> Optional[dict[str, str]]:
    if not isinstance(it, dict):
        return None
    front, back = it.get("front"), it.get("back")
    if not isinstance(front, str) or not front.strip():
        return None
    if not isinstance(back, str) or not back.strip():
        return None
    return {"front": front.strip(), "back": back.strip()}


class AssessmentGenerator:
    """Section quizzes and subtopic flashcards from generated course text."""

    def __init__(self, db: Session, llm, *, limiter: Optional[TokenBucket] = None):
        self.db = db
        self.llm = llm
        self.limiter = limiter

    def _complete_json(self, system: str, user: str) -> Optional[dict[str, Any]]:
        if self.limiter is not None:
            self.limiter.acquire()
        try:
            return self.llm.complete_json(system, user, temperature=0.3)
        except ValueError as e:
            logger.warning("assessment response was not JSON: %s", e)
            return None

    def generate_section_quiz(self, course_id: int, section: SectionContent) -> Optional[SectionQuiz]:
        content = "\n\n".join(f"## {s.title}\n{s.text or ''}" for s in section.subtopics)
        payload = self._complete_json(
            QUIZ_SYSTEM,
            QUIZ_USER_TEMPLATE.format(section=section.title, content=_clip(content, MAX_CONTENT_CHARS)),
        )
        items = (payload or {}).get("questions")
        questions = [q for q in (_valid_question(it) for it in items or []) if q][:QUIZ_MAX]
        if len(questions) < QUIZ_MIN:
            logger.warning(
                "section %s: only %d valid quiz questions, skipping quiz", section.section_id, len(questions)
            )
            return None

        self.db.execute(delete(SectionQuiz).where(SectionQuiz.section_id == section.section_id))
        quiz = SectionQuiz(
            course_id=course_id,
            section_id=section.section_id,
            title=f"{section.title} Quiz",
            questions=questions,
        )
        self.db.add(quiz)
        self.db.commit()
        return quiz

    def generate_flashcards(
        self, course_id: int, subtopic_id: int, title: str, markdown: str, transcript: str
    ) -> list[SubtopicFlashcard]:
        payload = self._complete_json(
            FLASHCARDS_SYSTEM,
            FLASHCARDS_USER_TEMPLATE.format(
                subtopic=title,
                markdown=_clip(markdown, MAX_CONTENT_CHARS),
                transcript=_clip(transcript, MAX_CONTENT_CHARS // 2),
            ),
        )
        cards = [c for c in (_valid_card(it) for it in (payload or {}).get("flashcards") or []) if c]

        self.db.execute(delete(SubtopicFlashcard).where(SubtopicFlashcard.subtopic_id == subtopic_id))
        rows = [
            SubtopicFlashcard(course_id=course_id, subtopic_id=subtopic_id, idx=i, front=c["front"], back=c["back"])
            for i, c in enumerate(cards)
        ]
        self.db.add_all(rows)
        self.db.commit()
        return rows

    def generate_for_course(
        self,
        course_id: int,
        sections: Sequence[SectionContent],
        transcripts: dict[int, str],
    ) -> dict[str, int]:
        quizzes = 0
        flashcards = 0
        for section in sections:
            if self.generate_section_quiz(course_id, section) is not None:
                quizzes += 1
            for sub in section.subtopics:
                flashcards += len(
                    self.generate_flashcards(
                        course_id,
                        sub.subtopic_id,
                        sub.title,
                        sub.text or "",
                        transcripts.get(sub.subtopic_id, ""),
                    )
                )
        logger.info("course %s: %d quizzes, %d flashcards", course_id, quizzes, flashcards)
        return {"quizzes": quizzes, "flashcards": flashcards}
