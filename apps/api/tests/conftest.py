import os

os.environ.setdefault("ENV", "test")

import hashlib  # noqa: E402
import json  # noqa: E402
from dataclasses import replace  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from coursegen.core.config import settings  # noqa: E402
from coursegen.db.base import Base  # noqa: E402
from coursegen.models.course import Course  # noqa: E402
from coursegen.services.llm import prompts  # noqa: E402
from coursegen.services.llm.openai_client import extract_json  # noqa: E402


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def cfg(tmp_path):
    return replace(settings, work_root=str(tmp_path / "work"), draft_ttl_sec=172800, minutes_per_subtopic=8)


@pytest.fixture
def course(db):
    c = Course(tutor_id="tutor-1", title="Intro to Python")
    db.add(c)
    db.commit()
    return c


# ----------------------------
# Fakes
# ----------------------------

class InMemoryStore:
    def __init__(self):
        self.values: dict[str, dict] = {}
        self.ttls: dict[str, int] = {}

    def set_with_ttl(self, key, value, ttl):
        self.values[key] = json.loads(json.dumps(value))
        self.ttls[key] = ttl

    def get(self, key):
        return self.values.get(key)


class FakeLLM:
    """
    Scripted LLM. `responses` are returned in order for complete();
    without them, replies are derived from the system prompt.
    """

    def __init__(self, responses=None, *, speech_error=None, on_speech=None):
        self.responses = list(responses or [])
        self.calls: list[dict] = []
        self.speech_calls: list[str] = []
        self.speech_error = speech_error
        self.on_speech = on_speech

    def complete(self, system, user, *, format="text", temperature=0.3):
        self.calls.append({"system": system, "user": user, "format": format, "temperature": temperature})
        if self.responses:
            return self.responses.pop(0)
        if system == prompts.MARKDOWN_SYSTEM:
            return "# Slide\n\n---\n\n## Deep Dive\n- point one\n- point two"
        if system == prompts.TRANSCRIPT_SYSTEM:
            return "[00:00] Welcome to this lesson.\n[00:12] Let us dig in."
        if system == prompts.QUIZ_SYSTEM:
            return json.dumps(
                {
                    "questions": [
                        {
                            "question": f"Question {i}?",
                            "options": ["a", "b", "c", "d"],
                            "correct_index": i % 4,
                            "explanation": "because",
                        }
                        for i in range(6)
                    ]
                }
            )
        if system == prompts.FLASHCARDS_SYSTEM:
            return json.dumps({"flashcards": [{"front": "What?", "back": "That."}, {"front": "Why?", "back": "So."}]})
        raise AssertionError(f"unexpected LLM call: {system[:40]!r}")

    def complete_json(self, system, user, *, temperature=0.3):
        return extract_json(self.complete(system, user, format="json", temperature=temperature))

    def synthesize_speech(self, text, voice=None):
        self.speech_calls.append(text)
        if self.on_speech is not None:
            self.on_speech(text)
        if self.speech_error is not None:
            raise self.speech_error
        return b"ID3-fake-mp3"


class FakeBroadcaster:
    def __init__(self):
        self.messages: list[tuple[str, str, dict]] = []

    def publish(self, channel, event, payload):
        self.messages.append((channel, event, payload))
        return True

    def kinds(self):
        return [m[2]["kind"] for m in self.messages]

    def percentages(self):
        return [m[2]["update"]["progress_percentage"] for m in self.messages if "update" in m[2]]


class FakeMediaTools:
    def __init__(self, *, render_error=None):
        self.render_error = render_error
        self.audio_calls: list[list[tuple[Path, int]]] = []
        self.video_calls: list[tuple[list[Path], Path, Path]] = []

    def render_slides(self, markdown_path, out_dir):
        if self.render_error is not None:
            raise self.render_error
        out_dir.mkdir(parents=True, exist_ok=True)
        images = [out_dir / "slides.001.png", out_dir / "slides.002.png"]
        for img in images:
            img.write_bytes(b"png")
        return images

    def compose_audio(self, clips, out_path):
        self.audio_calls.append(list(clips))
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(b"mp3")
        return out_path

    def compile_video(self, images, audio_path, out_path):
        self.video_calls.append((list(images), audio_path, out_path))
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(b"mp4")
        return out_path


class FakeStorage:
    def __init__(self):
        self.uploads: list[tuple[str, str, str]] = []

    def put_file(self, bucket, key, path, content_type):
        assert Path(path).exists()
        self.uploads.append((bucket, key, content_type))
        return f"http://storage.local/{bucket}/{key}"


def fake_embed(texts):
    """Deterministic 384-dim vectors derived from the text hash."""
    out = []
    for t in texts:
        digest = hashlib.sha256(t.encode("utf-8")).digest()
        out.append([(digest[i % len(digest)] / 255.0) - 0.5 for i in range(384)])
    return out


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()
