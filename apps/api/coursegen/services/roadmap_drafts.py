# apps/api/coursegen/services/roadmap_drafts.py
from __future__ import annotations

import json
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from coursegen.core.config import Settings, settings as default_settings
from coursegen.core.errors import NotFoundError, ValidationError
from coursegen.schemas.drafts import (
    Draft,
    DraftConstraints,
    DraftView,
    EditChange,
    FinalizationResult,
    HierarchicalRoadmap,
    SubtopicNode,
    TopicNode,
)
from coursegen.services.ephemeral_store import EphemeralStore, draft_key
from coursegen.services.llm.prompts import (
    REPAIR_SYSTEM,
    REPAIR_USER_TEMPLATE,
    ROADMAP_EDIT_SYSTEM,
    ROADMAP_EDIT_USER_TEMPLATE,
    ROADMAP_SYSTEM,
    ROADMAP_USER_TEMPLATE,
)

logger = logging.getLogger(__name__)

GENERATE_TEMPERATURE = 0.3
EDIT_TEMPERATURE = 0.2
REPAIR_TEMPERATURE = 0.0


# ----------------------------
# Flat <-> hierarchical
# ----------------------------

def validate_roadmap_data(obj: Any) -> dict[str, list[str]]:
    """
    Flat roadmap rules:
    - non-empty object
    - every value is a non-empty array of non-empty strings (trimmed)
    Returns a trimmed copy preserving order.
    """
    if not isinstance(obj, dict) or not obj:
        raise ValidationError("roadmap must be a non-empty JSON object")

    out: dict[str, list[str]] = {}
    for topic, subs in obj.items():
        title = str(topic).strip()
        if not title:
            raise ValidationError("main topic names must be non-empty")
        if title in out:
            raise ValidationError(f"duplicate main topic: {title!r}")
        if not isinstance(subs, list) or not subs:
            raise ValidationError(f"main topic {title!r} must map to a non-empty array of subtopics")

        cleaned: list[str] = []
        for s in subs:
            if not isinstance(s, str) or not s.strip():
                raise ValidationError(f"main topic {title!r} has an empty or non-string subtopic")
            cleaned.append(s.strip())
        out[title] = cleaned
    return out


def to_hierarchical(data: dict[str, list[str]]) -> HierarchicalRoadmap:
    return HierarchicalRoadmap(
        main_topics=[
            TopicNode(
                id=f"main_{secrets.token_hex(4)}",
                title=topic,
                subtopics=[SubtopicNode(id=f"sub_{secrets.token_hex(4)}", title=s) for s in subs],
            )
            for topic, subs in data.items()
        ]
    )


def from_llm_result(obj: Any) -> Any:
    """Accept either the hierarchical shape ({"main_topics": [...]}) or flat."""
    if not isinstance(obj, dict) or "main_topics" not in obj:
        return obj

    topics = obj.get("main_topics")
    if not isinstance(topics, list):
        raise ValidationError("main_topics must be an array")

    flat: dict[str, Any] = {}
    for t in topics:
        if not isinstance(t, dict):
            raise ValidationError("each main topic must be an object")
        title = str(t.get("title") or "").strip()
        subs = []
        for s in t.get("subtopics") or []:
            subs.append(s.get("title") if isinstance(s, dict) else s)
        if title in flat:
            raise ValidationError(f"duplicate main topic: {title!r}")
        flat[title] = subs
    return flat


def _describe_changes(changes: Iterable[EditChange]) -> str:
    lines = []
    for i, c in enumerate(changes, start=1):
        parts = [f"{i}. op={c.op}"]
        if c.id:
            parts.append(f"id={c.id}")
        if c.query:
            parts.append(f"query={c.query}")
        lines.append(" ".join(parts))
    return "\n".join(lines)


# ----------------------------
# Engine
# ----------------------------

class RoadmapDraftEngine:
    """generate / edit / finalize for ephemeral, versioned roadmap drafts."""

    def __init__(
        self,
        llm,
        store: EphemeralStore,
        *,
        cfg: Settings = default_settings,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.llm = llm
        self.store = store
        self.cfg = cfg
        self._now = now

    # -- storage --

    def _save(self, draft: Draft) -> None:
        self.store.set_with_ttl(draft_key(draft.id), draft.model_dump(mode="json"), self.cfg.draft_ttl_sec)

    def load(self, draft_id: str) -> Draft:
        raw = self.store.get(draft_key(draft_id))
        if raw is None:
            raise NotFoundError(f"Roadmap draft not found or expired: {draft_id}")
        return Draft.model_validate(raw)

    def _view(self, draft: Draft) -> DraftView:
        return DraftView(
            id=draft.id,
            version=draft.version,
            data=draft.data,
            roadmap=to_hierarchical(draft.data),
            expires_in_sec=self.cfg.draft_ttl_sec,
        )

    # -- LLM parsing --

    def _parse_with_repair(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("roadmap JSON parse failed; issuing repair call")

        repaired = self.llm.complete(
            REPAIR_SYSTEM,
            REPAIR_USER_TEMPLATE.format(raw=raw),
            format="json",
            temperature=REPAIR_TEMPERATURE,
        )
        try:
            return json.loads(repaired)
        except json.JSONDecodeError as e:
            raise ValidationError(f"roadmap is not valid JSON after repair: {e}") from e

    # -- operations --

    def generate(self, prompt: str, constraints: Optional[DraftConstraints] = None) -> DraftView:
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValidationError("prompt is required")
        c = constraints or DraftConstraints()

        user = ROADMAP_USER_TEMPLATE.format(
            prompt=prompt,
            level=c.level or "any",
            duration_weeks=c.duration_weeks or "flexible",
            weekly_commitment_hours=c.weekly_commitment_hours or "flexible",
            tech_stack=", ".join(c.tech_stack_prefs) or "no preference",
        )
        raw = self.llm.complete(ROADMAP_SYSTEM, user, format="json", temperature=GENERATE_TEMPERATURE)
        data = validate_roadmap_data(self._parse_with_repair(raw))

        now = self._now()
        draft = Draft(
            id=f"temp_{uuid.uuid4()}",
            user_query=prompt,
            data=data,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self._save(draft)
        logger.info("roadmap draft %s generated: %d topics", draft.id, len(data))
        return self._view(draft)

    def edit(self, draft_id: str, changes: list[EditChange]) -> DraftView:
        draft = self.load(draft_id)
        if not changes:
            raise ValidationError("at least one change is required")

        snapshot = to_hierarchical(draft.data)
        user = ROADMAP_EDIT_USER_TEMPLATE.format(
            roadmap=snapshot.model_dump_json(indent=2),
            changes=_describe_changes(changes),
        )
        raw = self.llm.complete(ROADMAP_EDIT_SYSTEM, user, format="json", temperature=EDIT_TEMPERATURE)
        data = validate_roadmap_data(from_llm_result(self._parse_with_repair(raw)))

        updated = draft.model_copy(
            update={"data": data, "version": draft.version + 1, "updated_at": self._now()}
        )
        self._save(updated)
        logger.info("roadmap draft %s edited -> v%d (%d changes)", draft_id, updated.version, len(changes))
        return self._view(updated)

    def finalize(
        self,
        db: Session,
        draft_id: str,
        *,
        course_id: int,
        tutor_id: str,
        enqueue=None,
    ) -> FinalizationResult:
        from coursegen.services.finalization import finalize_draft

        draft = self.load(draft_id)
        return finalize_draft(db, draft, course_id=course_id, tutor_id=tutor_id, enqueue=enqueue, cfg=self.cfg)
