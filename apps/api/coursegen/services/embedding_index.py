# apps/api/coursegen/services/embedding_index.py
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import numpy as np
from sqlalchemy import bindparam, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from coursegen.core.config import settings
from coursegen.models.course_embedding import CourseEmbedding

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.7
DEFAULT_LIMIT = 10

Embedder = Callable[[List[str]], List[List[float]]]


@dataclass
class SubtopicContent:
    subtopic_id: int
    title: str
    text: Optional[str]  # None until the markdown exists


@dataclass
class SectionContent:
    section_id: int
    title: str
    subtopics: list[SubtopicContent] = field(default_factory=list)


@dataclass
class IndexDocument:
    content_type: str  # course|section|subtopic
    content_id: str
    text: str


@dataclass
class IndexStats:
    inserted: int = 0
    skipped: int = 0


@dataclass
class EmbeddingMatch:
    content_type: str
    content_id: str
    content_text: str
    score: float


def _placeholder(title: str) -> str:
    return f"{title} (content not generated yet)"


def _sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def _to_pgvector_literal(vec: Sequence[float]) -> str:
    # bound as text and cast, otherwise psycopg sends double precision[]
    return "[" + ",".join(f"{float(v):.8f}" for v in vec) + "]"


def build_documents(course_id: int, sections: Sequence[SectionContent]) -> list[IndexDocument]:
    docs: list[IndexDocument] = []

    for sec in sections:
        parts = [f"{sub.title}\n\n{sub.text or _placeholder(sub.title)}" for sub in sec.subtopics]
        docs.append(
            IndexDocument(
                content_type="section",
                content_id=str(sec.section_id),
                text=f"Section: {sec.title}\n\n" + "\n\n---\n\n".join(parts),
            )
        )
        for sub in sec.subtopics:
            docs.append(
                IndexDocument(
                    content_type="subtopic",
                    content_id=str(sub.subtopic_id),
                    text=f"{sub.title}\n\n{sub.text or _placeholder(sub.title)}",
                )
            )

    outline = "\n".join(
        f"- {sec.title}: " + ", ".join(sub.title for sub in sec.subtopics) for sec in sections
    )
    docs.append(
        IndexDocument(
            content_type="course",
            content_id=str(course_id),
            text="Course sections: " + ", ".join(sec.title for sec in sections) + "\n\n" + outline,
        )
    )
    return docs


class EmbeddingIndexer:
    """
    Course-scoped vector index.

    Upsert is skip-if-exists on (course_id, content_id, content_type): an
    entry that is already indexed is never re-embedded or refreshed.
    """

    def __init__(self, db: Session, *, embed: Optional[Embedder] = None, model_name: str = settings.embed_model):
        self.db = db
        self.model_name = model_name
        self._embed = embed

    def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        if self._embed is not None:
            return self._embed(texts)
        from coursegen.services.embeddings import embed_texts

        return embed_texts(texts, model_name=self.model_name)

    def _is_postgres(self) -> bool:
        return self.db.get_bind().dialect.name == "postgresql"

    def _existing_keys(self, course_id: int) -> set[tuple[str, str]]:
        rows = self.db.execute(
            select(CourseEmbedding.content_type, CourseEmbedding.content_id).where(
                CourseEmbedding.course_id == course_id
            )
        ).all()
        return {(r[0], r[1]) for r in rows}

    def index_course(self, course_id: int, sections: Sequence[SectionContent]) -> IndexStats:
        docs = build_documents(course_id, sections)
        existing = self._existing_keys(course_id)

        todo = [d for d in docs if (d.content_type, d.content_id) not in existing]
        stats = IndexStats(skipped=len(docs) - len(todo))
        if not todo:
            logger.info("course %s: all %d embeddings already indexed", course_id, len(docs))
            return stats

        vecs = self._embed_texts([d.text for d in todo])
        rows = [
            {
                "course_id": int(course_id),
                "content_id": d.content_id,
                "content_type": d.content_type,
                "content_text": d.text,
                "content_hash": _sha256(d.text),
                "model": self.model_name,
                "dim": len(v),
                "embedding": v,
            }
            for d, v in zip(todo, vecs)
        ]

        if self._is_postgres():
            # a concurrent job may have indexed the same keys since the read above
            stmt = (
                pg_insert(CourseEmbedding.__table__)
                .values(rows)
                .on_conflict_do_nothing(constraint="uq_course_embeddings_content")
            )
            result = self.db.execute(stmt)
            inserted = int(result.rowcount or 0)
        else:
            self.db.add_all([CourseEmbedding(**r) for r in rows])
            inserted = len(rows)
        self.db.commit()

        stats.inserted = inserted
        stats.skipped += len(rows) - inserted
        logger.info("course %s: indexed %d embeddings, skipped %d", course_id, stats.inserted, stats.skipped)
        return stats

    def search(
        self,
        course_id: int,
        query_vector: Sequence[float],
        *,
        threshold: float = DEFAULT_THRESHOLD,
        limit: int = DEFAULT_LIMIT,
    ) -> list[EmbeddingMatch]:
        """Matches with cosine similarity above `threshold`, best first."""
        if limit <= 0:
            return []
        if self._is_postgres():
            return self._search_pgvector(course_id, query_vector, threshold, limit)

        rows = self.db.execute(
            select(CourseEmbedding).where(CourseEmbedding.course_id == course_id)
        ).scalars().all()

        matches: list[EmbeddingMatch] = []
        for r in rows:
            score = cosine_similarity(list(query_vector), list(r.embedding))
            if score > threshold:
                matches.append(EmbeddingMatch(r.content_type, r.content_id, r.content_text, score))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:limit]

    def _search_pgvector(
        self, course_id: int, query_vector: Sequence[float], threshold: float, limit: int
    ) -> list[EmbeddingMatch]:
        stmt = text(
            """
            SELECT
              ce.content_type AS content_type,
              ce.content_id AS content_id,
              ce.content_text AS content_text,
              (1.0 - (ce.embedding <=> (:qvec)::vector)) AS score
            FROM course_embeddings ce
            WHERE ce.course_id = :course_id
              AND (1.0 - (ce.embedding <=> (:qvec)::vector)) > :threshold
            ORDER BY ce.embedding <=> (:qvec)::vector
            LIMIT :k
            """
        ).bindparams(
            bindparam("qvec"),
            bindparam("course_id"),
            bindparam("threshold"),
            bindparam("k"),
        )
        rows = (
            self.db.execute(
                stmt,
                {
                    "qvec": _to_pgvector_literal(query_vector),
                    "course_id": int(course_id),
                    "threshold": float(threshold),
                    "k": int(limit),
                },
            )
            .mappings()
            .all()
        )
        return [
            EmbeddingMatch(str(r["content_type"]), str(r["content_id"]), str(r["content_text"]), float(r["score"]))
            for r in rows
        ]
