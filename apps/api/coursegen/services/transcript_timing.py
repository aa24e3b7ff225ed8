# apps/api/coursegen/services/transcript_timing.py
from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class TimedSegment:
    start: float  # seconds
    end: float
    text: str

    @property
    def start_ms(self) -> int:
        return int(round(self.start * 1000))


# HH:MM:SS,mmm | HH:MM:SS.mmm | MM:SS.mmm | MM:SS
_TIMECODE = r"(?:(\d{1,2}):)?(\d{1,2}):(\d{2})(?:[.,](\d{1,3}))?"
_RANGE_RE = re.compile(rf"^\s*{_TIMECODE}\s*-->\s*{_TIMECODE}")
_BRACKET_RE = re.compile(r"^\s*\[(?:(\d{1,2}):)?(\d{1,2}):(\d{2})\]\s*(.+?)\s*$")
_CUE_INDEX_RE = re.compile(r"^\s*\d+\s*$")

FALLBACK_SEGMENT_SEC = 3.0


def _to_seconds(h: str | None, m: str, s: str, frac: str | None) -> float:
    ms = int((frac or "0").ljust(3, "0")[:3])
    return int(h or 0) * 3600.0 + int(m) * 60.0 + int(s) + ms / 1000.0


def _normalize_space(s: str) -> str:
    return re.sub(r"\s+", " ", (s or "")).strip()


def _parse_ranged(lines: list[str]) -> list[TimedSegment]:
    segments: list[TimedSegment] = []
    i = 0
    while i < len(lines):
        m = _RANGE_RE.match(lines[i])
        if not m:
            i += 1
            continue

        start = _to_seconds(*m.group(1, 2, 3, 4))
        end = _to_seconds(*m.group(5, 6, 7, 8))
        i += 1

        text_lines: list[str] = []
        while i < len(lines) and lines[i].strip():
            if _RANGE_RE.match(lines[i]):
                break
            if not _CUE_INDEX_RE.match(lines[i]):
                text_lines.append(lines[i].strip())
            i += 1

        text = _normalize_space(" ".join(text_lines))
        if text:
            segments.append(TimedSegment(start=start, end=max(start, end), text=text))
    return segments


def _parse_bracketed(lines: list[str]) -> list[TimedSegment]:
    segments: list[TimedSegment] = []
    for line in lines:
        m = _BRACKET_RE.match(line)
        if not m:
            continue
        start = _to_seconds(m.group(1), m.group(2), m.group(3), None)
        text = _normalize_space(m.group(4))
        if text:
            segments.append(TimedSegment(start=start, end=start + FALLBACK_SEGMENT_SEC, text=text))
    return segments


def parse_timed_transcript(raw: str) -> list[TimedSegment]:
    """
    Parse narration into timed segments, ordered by start.

    Ranged cues (SRT/VTT style, `00:00:01,000 --> 00:00:04,000` followed by
    text lines up to a blank line) win; otherwise `[MM:SS] text` lines are used.
    """
    lines = (raw or "").replace("\r\n", "\n").split("\n")
    segments = _parse_ranged(lines)
    if not segments:
        segments = _parse_bracketed(lines)
    return sorted(segments, key=lambda s: s.start)

