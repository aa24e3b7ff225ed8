# apps/api/coursegen/services/tutor.py
from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.orm import Session

from coursegen.models.tutor_context import TutorContext
from coursegen.services.embedding_index import SectionContent
from coursegen.services.llm.prompts import TUTOR_SYSTEM_TEMPLATE

logger = logging.getLogger(__name__)


def initialize_tutor(
    db: Session, course_id: int, course_title: str, sections: Sequence[SectionContent]
) -> TutorContext:
    """Create or refresh the AI study-buddy context for a course."""
    outline = [
        {"section": s.title, "subtopics": [sub.title for sub in s.subtopics]}
        for s in sections
    ]
    outline_text = "\n".join(
        f"{i}. {item['section']}: " + ", ".join(item["subtopics"]) for i, item in enumerate(outline, start=1)
    )
    prompt = TUTOR_SYSTEM_TEMPLATE.format(course_title=course_title or "Untitled course", outline=outline_text)

    ctx = db.query(TutorContext).filter(TutorContext.course_id == course_id).first()
    if ctx is None:
        ctx = TutorContext(course_id=course_id, system_prompt=prompt, outline=outline)
        db.add(ctx)
    else:
        ctx.system_prompt = prompt
        ctx.outline = outline
    db.commit()

    logger.info("course %s: tutor context ready (%d sections)", course_id, len(outline))
    return ctx
