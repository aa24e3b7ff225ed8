# apps/api/coursegen/services/content_pipeline.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from coursegen.core.config import Settings, settings as default_settings
from coursegen.core.errors import NotFoundError, StageArtifactError
from coursegen.models.course import Course
from coursegen.models.course_section import CourseSection
from coursegen.models.course_subtopic import SUBTOPIC_FAILED, SUBTOPIC_STATUS_ORDER, CourseSubtopic
from coursegen.schemas.jobs import ContentJobPayload
from coursegen.services.embedding_index import SectionContent, SubtopicContent
from coursegen.services.llm.prompts import (
    MARKDOWN_SYSTEM,
    MARKDOWN_USER_TEMPLATE,
    TRANSCRIPT_SYSTEM,
    TRANSCRIPT_USER_TEMPLATE,
)
from coursegen.services.progress import ProgressTracker
from coursegen.services.rate_limit import TokenBucket
from coursegen.services.transcript_timing import parse_timed_transcript
from coursegen.services.tutor import initialize_tutor
from coursegen.services.workspace import JobWorkspace, PlanUnit

logger = logging.getLogger(__name__)

MARP_FRONT_MATTER = "---\nmarp: true\ntheme: default\nsize: 1920x1080\npaginate: true\n---\n\n"

_FENCE_RE = re.compile(r"^```(?:markdown|md)?\s*\n(.*?)\n```\s*$", re.DOTALL)


@dataclass(frozen=True)
class Stage:
    step: str
    start: int
    width: int
    label: str


MARKDOWN = Stage("generating_markdown", 5, 20, "Generating slide content")
TRANSCRIPT = Stage("generating_transcripts", 25, 20, "Writing narration")
AUDIO = Stage("generating_audio", 45, 20, "Synthesizing narration audio")
SLIDES = Stage("rendering_slides", 65, 10, "Rendering slides")
VIDEO = Stage("compiling_videos", 75, 10, "Compiling videos")
PUBLISH = Stage("uploading_videos", 85, 10, "Publishing videos")

POST_PROCESS_START = 95
POST_PROCESS_STEPS = (
    ("generating_embeddings", "Building search embeddings"),
    ("generating_assessments", "Generating quizzes and flashcards"),
    ("initializing_ai_buddy", "Initializing AI study buddy"),
    ("finalizing", "Finalizing course"),
)

FAILURE_STEP = "content_generation"


def advance_subtopic(subtopic: Optional[CourseSubtopic], status: str) -> None:
    """Move a subtopic strictly forward through the pipeline order."""
    if subtopic is None:
        return
    if subtopic.status == SUBTOPIC_FAILED:
        raise ValueError(f"subtopic {subtopic.id} already failed")
    if SUBTOPIC_STATUS_ORDER.index(status) <= SUBTOPIC_STATUS_ORDER.index(subtopic.status):
        raise ValueError(f"subtopic {subtopic.id}: {subtopic.status} -> {status} is not forward")
    subtopic.status = status


def subtopic_context(units: list[PlanUnit], i: int) -> tuple[str, str]:
    """Short previous/next context from the neighbouring subtopic (crossing sections if needed)."""
    u = units[i]
    prev = units[i - 1] if i > 0 else None
    nxt = units[i + 1] if i + 1 < len(units) else None

    if prev is None:
        before = "This is the first topic of the course."
    elif prev.section_index == u.section_index:
        before = f"Previous topic: {prev.subtopic_title}"
    else:
        before = f'Previous section "{prev.section_title}" covered: {prev.subtopic_title}'

    if nxt is None:
        after = "This is the last topic of the course."
    elif nxt.section_index == u.section_index:
        after = f"Next topic: {nxt.subtopic_title}"
    else:
        after = f'Next section "{nxt.section_title}" will cover: {nxt.subtopic_title}'

    return before, after


def _strip_fences(text: str) -> str:
    t = (text or "").strip()
    m = _FENCE_RE.match(t)
    return m.group(1).strip() if m else t


def mark_unfinished_failed(db: Session, course_id: Optional[int], roadmap_id: int) -> int:
    if course_id is None:
        return 0
    rows = (
        db.query(CourseSubtopic)
        .join(CourseSection, CourseSection.id == CourseSubtopic.section_id)
        .filter(CourseSection.course_id == course_id, CourseSection.roadmap_id == roadmap_id)
        .filter(CourseSubtopic.status != "completed")
        .all()
    )
    for r in rows:
        r.status = SUBTOPIC_FAILED
    db.commit()
    return len(rows)


class ContentPipeline:
    """
    One content-generation job: stages run strictly in order over every
    subtopic (section/index order); each stage finishes for all subtopics
    before the next begins.
    """

    def __init__(
        self,
        db: Session,
        payload: ContentJobPayload,
        *,
        llm,
        tools,
        storage,
        tracker: ProgressTracker,
        limiter: TokenBucket,
        indexer=None,
        assessments=None,
        tutor_init: Callable[..., Any] = initialize_tutor,
        cfg: Settings = default_settings,
        heartbeat: Optional[Callable[[], None]] = None,
    ):
        self.db = db
        self.payload = payload
        self.llm = llm
        self.tools = tools
        self.storage = storage
        self.tracker = tracker
        self.limiter = limiter
        self.indexer = indexer
        self.assessments = assessments
        self.tutor_init = tutor_init
        self.cfg = cfg
        self.heartbeat = heartbeat
        self.workspace = JobWorkspace(cfg.work_root, payload.course_id, payload.session_id)
        self.units: list[PlanUnit] = []

    # ----------------------------
    # Setup
    # ----------------------------

    def _load_units(self) -> list[PlanUnit]:
        p = self.payload
        if p.course_id is None:
            # session-scoped job: nothing persisted yet, plan comes from the payload
            return [
                PlanUnit(section_index=s_idx, section_title=topic, subtopic_index=i, subtopic_title=title)
                for s_idx, (topic, subs) in enumerate(p.roadmap_data.items())
                for i, title in enumerate(subs)
            ]

        sections = (
            self.db.query(CourseSection)
            .filter(CourseSection.course_id == p.course_id, CourseSection.roadmap_id == p.roadmap_id)
            .order_by(CourseSection.index.asc())
            .all()
        )
        if not sections:
            raise NotFoundError(f"No sections for course {p.course_id} roadmap {p.roadmap_id}")

        return [
            PlanUnit(
                section_index=sec.index,
                section_title=sec.title,
                subtopic_index=sub.index,
                subtopic_title=sub.title,
                section_id=sec.id,
                subtopic=sub,
            )
            for sec in sections
            for sub in sec.subtopics
        ]

    def _reset_units(self) -> None:
        for u in self.units:
            sub = u.subtopic
            if sub is None:
                continue
            sub.status = "pending"
            sub.markdown_path = None
            sub.transcript_path = None
            sub.audio_path = None
            sub.video_url = None
        self.db.commit()

    # ----------------------------
    # Driver
    # ----------------------------

    def run(self, attempt: int = 1) -> dict[str, Any]:
        p = self.payload
        logger.info(
            "content generation start progress=%s course=%s session=%s attempt=%d",
            p.progress_id,
            p.course_id,
            p.session_id,
            attempt,
        )
        self.workspace.ensure()
        try:
            self.tracker.restart(attempt)
            self.units = self._load_units()
            self._reset_units()

            self._run_stage(MARKDOWN, self._generate_markdown)
            self._run_stage(TRANSCRIPT, self._generate_transcript)
            self._run_stage(AUDIO, self._generate_audio)
            self._run_stage(SLIDES, self._render_slides)
            self._run_stage(VIDEO, self._compile_video)
            self._run_stage(PUBLISH, self._publish_video)
            self._post_process()

            self.tracker.complete()
            logger.info("content generation completed progress=%s", p.progress_id)
            return {
                "ok": True,
                "progress_id": p.progress_id,
                "course_id": p.course_id,
                "subtopics": len(self.units),
            }
        except Exception as e:
            logger.exception("content generation failed progress=%s", p.progress_id)
            self.tracker.fail(FAILURE_STEP, str(e))
            raise
        finally:
            self.workspace.cleanup()

    def _beat(self) -> None:
        # renews the course lease; raises if another job may now own the rows
        if self.heartbeat is not None:
            self.heartbeat()

    def _run_stage(self, stage: Stage, handler: Callable[[PlanUnit, int], None]) -> None:
        self._beat()
        total = len(self.units)
        logger.info("stage %s: %d subtopics", stage.step, total)
        self.tracker.report(stage.start, step=stage.step, task=stage.label)

        for done, unit in enumerate(self.units, start=1):
            self._beat()
            handler(unit, done - 1)
            self.db.commit()
            self.tracker.report(
                stage.start + done / total * stage.width,
                step=stage.step,
                task=f"{stage.label}: {unit.subtopic_title}",
                section_index=unit.section_index,
                subtopic_index=unit.subtopic_index,
                section_title=unit.section_title,
                subtopic_title=unit.subtopic_title,
            )

    def _complete(self, system: str, user: str, *, temperature: float) -> str:
        self.limiter.acquire()
        return self.llm.complete(system, user, format="text", temperature=temperature)

    # ----------------------------
    # Stages A-F (per subtopic)
    # ----------------------------

    def _generate_markdown(self, unit: PlanUnit, i: int) -> None:
        before, after = subtopic_context(self.units, i)
        body = _strip_fences(
            self._complete(
                MARKDOWN_SYSTEM,
                MARKDOWN_USER_TEMPLATE.format(
                    subtopic=unit.subtopic_title,
                    section=unit.section_title,
                    previous_context=before,
                    next_context=after,
                ),
                temperature=0.7,
            )
        )
        if not body:
            raise StageArtifactError(f"empty slide markdown for {unit.subtopic_title!r}")

        path = self.workspace.markdown_path(unit)
        path.write_text(MARP_FRONT_MATTER + body + "\n", encoding="utf-8")
        unit.markdown_path = path
        if unit.subtopic is not None:
            unit.subtopic.markdown_path = str(path)
        advance_subtopic(unit.subtopic, "markdown_generated")

    def _generate_transcript(self, unit: PlanUnit, i: int) -> None:
        markdown = unit.markdown_path.read_text(encoding="utf-8")
        narration = self._complete(
            TRANSCRIPT_SYSTEM,
            TRANSCRIPT_USER_TEMPLATE.format(subtopic=unit.subtopic_title, markdown=markdown),
            temperature=0.5,
        ).strip()
        if not narration:
            raise StageArtifactError(f"empty narration for {unit.subtopic_title!r}")

        path = self.workspace.transcript_path(unit)
        path.write_text(narration + "\n", encoding="utf-8")
        unit.transcript_path = path
        if unit.subtopic is not None:
            unit.subtopic.transcript_path = str(path)
        advance_subtopic(unit.subtopic, "transcript_generated")

    def _generate_audio(self, unit: PlanUnit, i: int) -> None:
        segments = parse_timed_transcript(unit.transcript_path.read_text(encoding="utf-8"))
        if not segments:
            raise StageArtifactError(f"no timed segments in narration for {unit.subtopic_title!r}")

        clips_dir = self.workspace.clips_dir(unit)
        clips: list[tuple[Path, int]] = []
        for n, seg in enumerate(segments):
            self.limiter.acquire()
            audio = self.llm.synthesize_speech(seg.text, voice=self.cfg.tts_voice)
            clip = clips_dir / f"clip_{n:03d}_{seg.start_ms}.mp3"
            clip.write_bytes(audio)
            clips.append((clip, seg.start_ms))

        path = self.tools.compose_audio(clips, self.workspace.audio_path(unit))
        unit.audio_path = path
        if unit.subtopic is not None:
            unit.subtopic.audio_path = str(path)
        advance_subtopic(unit.subtopic, "audio_generated")

    def _render_slides(self, unit: PlanUnit, i: int) -> None:
        unit.slide_images = self.tools.render_slides(unit.markdown_path, self.workspace.slides_dir(unit))

    def _compile_video(self, unit: PlanUnit, i: int) -> None:
        unit.video_path = self.tools.compile_video(
            unit.slide_images, unit.audio_path, self.workspace.video_path(unit)
        )

    def storage_key(self, unit: PlanUnit) -> str:
        p = self.payload
        scope = f"courses/{p.course_id}" if p.course_id is not None else f"sessions/{p.session_id}"
        return f"{scope}/videos/{unit.section_slug}/{unit.slug}.mp4"

    def _publish_video(self, unit: PlanUnit, i: int) -> None:
        if unit.video_path is None or not unit.video_path.exists():
            raise StageArtifactError(f"video missing for {unit.subtopic_title!r}")
        url = self.storage.put_file(
            self.cfg.media_bucket, self.storage_key(unit), unit.video_path, "video/mp4"
        )
        if unit.subtopic is not None:
            unit.subtopic.video_url = url
        advance_subtopic(unit.subtopic, "completed")

    # ----------------------------
    # Stage G
    # ----------------------------

    def _read(self, path: Optional[Path]) -> Optional[str]:
        if path is None or not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def section_contents(self) -> list[SectionContent]:
        sections: dict[int, SectionContent] = {}
        for u in self.units:
            sec = sections.setdefault(
                u.section_index,
                SectionContent(section_id=u.section_id or 0, title=u.section_title),
            )
            sec.subtopics.append(
                SubtopicContent(
                    subtopic_id=u.subtopic.id if u.subtopic is not None else 0,
                    title=u.subtopic_title,
                    text=self._read(u.markdown_path),
                )
            )
        return [sections[k] for k in sorted(sections)]

    def _post_process(self) -> None:
        self._beat()
        course_id = self.payload.course_id
        contents = self.section_contents()

        for k, (step, label) in enumerate(POST_PROCESS_STEPS, start=1):
            self.tracker.report(POST_PROCESS_START + k, step=step, task=label)
            if course_id is None:
                continue

            if step == "generating_embeddings" and self.indexer is not None:
                self.indexer.index_course(course_id, contents)
            elif step == "generating_assessments" and self.assessments is not None:
                transcripts = {
                    u.subtopic.id: self._read(u.transcript_path) or ""
                    for u in self.units
                    if u.subtopic is not None
                }
                self.assessments.generate_for_course(course_id, contents, transcripts)
            elif step == "initializing_ai_buddy":
                course = self.db.get(Course, course_id)
                self.tutor_init(self.db, course_id, course.title if course else "", contents)

        if course_id is None:
            logger.info("session-scoped job: embeddings, assessments and tutor skipped")
