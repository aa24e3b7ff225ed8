# apps/api/coursegen/services/media_tools.py
from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from coursegen.core.config import Settings, settings as default_settings
from coursegen.core.errors import ExternalToolError

logger = logging.getLogger(__name__)

LOUDNORM = "loudnorm=I=-16:TP=-1.5:LRA=11"

# Only these variables reach the child process.
_ENV_PASSTHROUGH = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR", "CHROME_PATH", "PUPPETEER_EXECUTABLE_PATH")


def _tool_env() -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if k in _ENV_PASSTHROUGH}


def _run(tool: str, args: Sequence[str], *, timeout: Optional[float] = None, cwd: Optional[Path] = None):
    logger.debug("running %s: %s", tool, " ".join(args))
    try:
        p = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=str(cwd) if cwd else None,
            env=_tool_env(),
        )
    except subprocess.TimeoutExpired as e:
        raise ExternalToolError(tool, f"timed out after {timeout:g}s") from e
    except FileNotFoundError as e:
        raise ExternalToolError(tool, f"executable not found: {args[0]}") from e

    if p.returncode != 0:
        raise ExternalToolError(
            tool,
            p.stderr.strip() or p.stdout.strip() or f"exited with code {p.returncode}",
            returncode=p.returncode,
        )
    return p


def _concat_line(path: Path) -> str:
    escaped = str(path.resolve()).replace("'", "'\\''")
    return f"file '{escaped}'"


class MediaTools:
    """marp (markdown -> slide PNGs) and ffmpeg (audio mix, video compile)."""

    def __init__(self, cfg: Settings = default_settings):
        self.cfg = cfg

    def render_slides(self, markdown_path: Path, out_dir: Path) -> list[Path]:
        out_dir.mkdir(parents=True, exist_ok=True)
        for stale in out_dir.glob("*.png"):
            stale.unlink()

        args = [
            self.cfg.marp_bin,
            str(markdown_path),
            "--images",
            "png",
            "-o",
            str(out_dir / "slides.png"),
            "--image-scale",
            "2",
            "--allow-local-files",
            "--html",
        ]
        _run("marp", args, timeout=self.cfg.marp_timeout_sec, cwd=markdown_path.parent)

        images = sorted(out_dir.glob("*.png"))
        if not images:
            raise ExternalToolError("marp", f"no slide images produced for {markdown_path.name}")
        return images

    def compose_audio(self, clips: Sequence[tuple[Path, int]], out_path: Path) -> Path:
        """
        Place each clip at its offset (ms) on one timeline, mix, loudness-normalize.
        """
        if not clips:
            raise ValueError("compose_audio needs at least one clip")
        out_path.parent.mkdir(parents=True, exist_ok=True)

        args: list[str] = [self.cfg.ffmpeg_bin, "-y"]
        for clip_path, _ in clips:
            args += ["-i", str(clip_path)]

        filters = [f"[{i}:a]adelay={max(0, int(ms))}:all=1[a{i}]" for i, (_, ms) in enumerate(clips)]
        labels = "".join(f"[a{i}]" for i in range(len(clips)))
        filters.append(
            f"{labels}amix=inputs={len(clips)}:duration=longest:dropout_transition=0,{LOUDNORM}[out]"
        )

        args += [
            "-filter_complex",
            ";".join(filters),
            "-map",
            "[out]",
            "-c:a",
            "libmp3lame",
            "-q:a",
            "2",
            str(out_path),
        ]
        _run("ffmpeg", args)
        return out_path

    def compile_video(self, images: Sequence[Path], audio_path: Path, out_path: Path) -> Path:
        """Slides shown for a fixed duration each, muxed with the narration."""
        if not images:
            raise ValueError("compile_video needs at least one image")
        out_path.parent.mkdir(parents=True, exist_ok=True)

        list_file = out_path.with_suffix(".images.txt")
        lines: list[str] = []
        for img in images:
            lines.append(_concat_line(img))
            lines.append(f"duration {self.cfg.seconds_per_slide}")
        # concat demuxer drops the last duration unless the final file is repeated
        lines.append(_concat_line(images[-1]))
        list_file.write_text("\n".join(lines) + "\n", encoding="utf-8")

        args = [
            self.cfg.ffmpeg_bin,
            "-y",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(list_file),
            "-i",
            str(audio_path),
            "-vf",
            "scale=trunc(iw/2)*2:trunc(ih/2)*2",
            "-c:v",
            "libx264",
            "-c:a",
            "aac",
            "-shortest",
            "-pix_fmt",
            "yuv420p",
            str(out_path),
        ]
        try:
            _run("ffmpeg", args)
        finally:
            list_file.unlink(missing_ok=True)

        if not out_path.exists():
            raise ExternalToolError("ffmpeg", f"video not written: {out_path.name}")
        return out_path
