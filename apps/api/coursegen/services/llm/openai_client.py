from __future__ import annotations

import json
import logging
from typing import Any, Literal

from openai import OpenAI, OpenAIError

from coursegen.core.config import Settings, settings as default_settings
from coursegen.core.errors import TransientIOError

logger = logging.getLogger(__name__)

ResponseFormat = Literal["text", "json"]


def _build_openai_client(cfg: Settings) -> OpenAI:
    if not cfg.openai_api_key:
        raise ValueError("OPENAI_API_KEY is missing")
    return OpenAI(
        api_key=cfg.openai_api_key,
        timeout=cfg.openai_timeout_sec,
        max_retries=cfg.openai_max_retries,
    )


def extract_json(text: str) -> dict[str, Any]:
    """
    Best-effort JSON extraction if model returns extra text.
    """
    text = (text or "").strip()
    if not text:
        raise ValueError("Empty response from model")

    # Fast path
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Try to find outermost JSON object
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return json.loads(text[start : end + 1])

    raise ValueError(f"Model returned non-JSON. First 200 chars: {text[:200]!r}")


class LLMClient:
    """Chat completion, speech synthesis and embedding calls."""

    def __init__(self, client: OpenAI | None = None, *, cfg: Settings = default_settings):
        self._client = client
        self.cfg = cfg

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = _build_openai_client(self.cfg)
        return self._client

    def complete(
        self,
        system: str,
        user: str,
        *,
        format: ResponseFormat = "text",
        temperature: float = 0.3,
    ) -> str:
        logger.debug("llm complete model=%s format=%s temperature=%s", self.cfg.openai_model, format, temperature)
        kwargs: dict[str, Any] = {}
        if format == "json":
            kwargs["response_format"] = {"type": "json_object"}
        try:
            chat = self.client.chat.completions.create(
                model=self.cfg.openai_model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                **kwargs,
            )
        except OpenAIError as e:
            raise TransientIOError(f"LLM completion failed: {e}") from e
        return (chat.choices[0].message.content or "").strip()

    def complete_json(self, system: str, user: str, *, temperature: float = 0.3) -> dict[str, Any]:
        raw = self.complete(system, user, format="json", temperature=temperature)
        return extract_json(raw)

    def synthesize_speech(self, text: str, voice: str | None = None) -> bytes:
        try:
            resp = self.client.audio.speech.create(
                model=self.cfg.tts_model,
                voice=voice or self.cfg.tts_voice,
                input=text,
            )
        except OpenAIError as e:
            raise TransientIOError(f"speech synthesis failed: {e}") from e
        return resp.content

    def embed(self, text: str) -> list[float]:
        from coursegen.services.embeddings import embed_texts

        return embed_texts([text], model_name=self.cfg.embed_model, device=self.cfg.embed_device)[0]
