# apps/api/coursegen/services/embeddings.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

import numpy as np

from sentence_transformers import SentenceTransformer  # type: ignore

from coursegen.core.config import settings

logger = logging.getLogger(__name__)

EMBED_DIM = settings.embed_dim


def _safe_device(requested: str) -> str:
    d = (requested or "cpu").strip().lower()
    if d not in {"cpu", "mps", "cuda"}:
        return "cpu"
    return d


@lru_cache(maxsize=4)
def _load_model(model_name: str, device: str) -> SentenceTransformer:
    logger.info("loading embedding model %s on %s", model_name, device)
    return SentenceTransformer(model_name, device=device)


def embed_texts(
    texts: List[str],
    *,
    model_name: str = settings.embed_model,
    device: Optional[str] = None,
    batch_size: int = 32,
) -> List[List[float]]:
    """
    Embed strings -> list of L2-normalized vectors.
    Falls back to CPU once if an accelerator device raises.
    """
    if not texts:
        return []

    dev = _safe_device(device or settings.embed_device)
    try:
        model = _load_model(model_name, dev)
    except RuntimeError:
        if dev == "cpu":
            raise
        logger.warning("embedding device %s unavailable, using cpu", dev)
        model = _load_model(model_name, "cpu")

    vecs = model.encode(
        texts,
        batch_size=batch_size,
        show_progress_bar=False,
        convert_to_numpy=True,
        normalize_embeddings=True,
    )
    arr = np.asarray(vecs, dtype=np.float32)
    if arr.ndim != 2 or arr.shape[1] != EMBED_DIM:
        # course_embeddings.embedding is Vector(EMBED_DIM)
        raise ValueError(f"{model_name} produced {arr.shape[-1]}-dim vectors, expected {EMBED_DIM}")
    return arr.tolist()

