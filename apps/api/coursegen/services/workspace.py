# apps/api/coursegen/services/workspace.py
from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from coursegen.models.course_subtopic import CourseSubtopic

logger = logging.getLogger(__name__)

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9]+")


def safe_name(title: str) -> str:
    return _UNSAFE_RE.sub("_", title or "").strip("_") or "untitled"


@dataclass
class PlanUnit:
    """One subtopic as the pipeline sees it, plus the artifacts it has so far."""

    section_index: int
    section_title: str
    subtopic_index: int
    subtopic_title: str
    section_id: Optional[int] = None
    subtopic: Optional[CourseSubtopic] = None

    markdown_path: Optional[Path] = None
    transcript_path: Optional[Path] = None
    audio_path: Optional[Path] = None
    slide_images: list[Path] = field(default_factory=list)
    video_path: Optional[Path] = None

    @property
    def section_slug(self) -> str:
        return f"{self.section_index:02d}_{safe_name(self.section_title)}"

    @property
    def slug(self) -> str:
        return f"{self.subtopic_index:02d}_{safe_name(self.subtopic_title)}"


class JobWorkspace:
    """
    Job-scoped staging directory:

      <root>/<course_id | session_<id>>/
        markdown/<section>/<subtopic>.md
        transcripts/<section>/<subtopic>.txt
        audio/<section>/<subtopic>.mp3  (+ <subtopic>_clips/)
        images/<section>/<subtopic>/slides.NNN.png
        videos/<section>/<subtopic>.mp4
    """

    def __init__(self, root: Path | str, course_id: Optional[int], session_id: Optional[str]):
        scope = str(course_id) if course_id is not None else f"session_{session_id}"
        self.base = Path(root) / scope

    def _file(self, kind: str, unit: PlanUnit, ext: str) -> Path:
        d = self.base / kind / unit.section_slug
        d.mkdir(parents=True, exist_ok=True)
        return d / f"{unit.slug}.{ext}"

    def markdown_path(self, unit: PlanUnit) -> Path:
        return self._file("markdown", unit, "md")

    def transcript_path(self, unit: PlanUnit) -> Path:
        return self._file("transcripts", unit, "txt")

    def audio_path(self, unit: PlanUnit) -> Path:
        return self._file("audio", unit, "mp3")

    def clips_dir(self, unit: PlanUnit) -> Path:
        d = self.base / "audio" / unit.section_slug / f"{unit.slug}_clips"
        d.mkdir(parents=True, exist_ok=True)
        return d

    def slides_dir(self, unit: PlanUnit) -> Path:
        return self.base / "images" / unit.section_slug / unit.slug

    def video_path(self, unit: PlanUnit) -> Path:
        return self._file("videos", unit, "mp4")

    def ensure(self) -> None:
        self.base.mkdir(parents=True, exist_ok=True)

    def cleanup(self) -> None:
        if self.base.exists():
            shutil.rmtree(self.base, ignore_errors=True)
            logger.info("removed working directory %s", self.base)
