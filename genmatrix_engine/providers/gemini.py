"""Gemini provider."""

from __future__ import annotations

import os
from typing import Any, Sequence

try:
    from google import genai  # type: ignore
    from google.genai import types  # type: ignore
except Exception:  # pragma: no cover
    genai = None  # type: ignore
    types = None  # type: ignore

from ..grid.prompts import build_descriptor_instruction
from ..utils import encode_data_uri, gemini_api_key
from .base import DescriptorRequest, EmptyResponseError, GeneratedArtifact, ImageRequest

DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"
DEFAULT_TEXT_MODEL = "gemini-2.5-flash"


class GeminiProvider:
    """Image and character-description calls against the Gemini API.

    SDK errors are not wrapped: the scheduler inspects them for rate-limit
    markers (HTTP 429 / RESOURCE_EXHAUSTED).
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str | None = None,
        image_model: str | None = None,
        text_model: str | None = None,
        client: Any = None,
    ) -> None:
        self._api_key = api_key
        self.image_model = (
            image_model or str(os.getenv("GENMATRIX_GEMINI_IMAGE_MODEL") or "").strip() or DEFAULT_IMAGE_MODEL
        )
        self.text_model = (
            text_model or str(os.getenv("GENMATRIX_GEMINI_TEXT_MODEL") or "").strip() or DEFAULT_TEXT_MODEL
        )
        self._client = client

    def describe(self, request: DescriptorRequest) -> str:
        client = self._ensure_client()
        instruction = build_descriptor_instruction(request.style, request.energy, request.physical)
        response = client.models.generate_content(
            model=request.model or self.text_model,
            contents=instruction,
            config=_content_config(candidate_count=1, modalities=None),
        )
        text = _extract_text(response)
        if not text:
            raise EmptyResponseError("Gemini returned no character description.")
        return text

    def generate(self, request: ImageRequest) -> GeneratedArtifact:
        client = self._ensure_client()
        model = request.model or self.image_model
        response = client.models.generate_content(
            model=model,
            contents=request.prompt,
            # Only one candidate needed per cell.
            config=_content_config(candidate_count=1, modalities=["IMAGE"]),
        )
        candidates = getattr(response, "candidates", None) or []
        blob = _first_image_blob(candidates)
        if blob is None:
            raise EmptyResponseError("No image data returned from Gemini.")
        data, mime_type = blob
        mime_type = mime_type or request.mime_type
        return GeneratedArtifact(
            uri=encode_data_uri(data, mime_type),
            mime_type=mime_type,
            metadata={"model": model, "candidates": len(candidates)},
        )

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        api_key = self._api_key or gemini_api_key()
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY or GOOGLE_API_KEY not set.")
        if genai is None:
            raise RuntimeError("google-genai package not installed. Run: pip install google-genai")
        self._client = genai.Client(api_key=api_key)
        return self._client


def _content_config(*, candidate_count: int, modalities: list[str] | None) -> Any:
    config_kwargs: dict[str, Any] = {"candidate_count": max(1, candidate_count)}
    if modalities:
        config_kwargs["response_modalities"] = list(modalities)
    if types is None:
        return config_kwargs
    return types.GenerateContentConfig(**config_kwargs)


def _iter_parts(candidates: Sequence[Any]) -> list[Any]:
    parts: list[Any] = []
    for candidate in candidates:
        content = getattr(candidate, "content", None)
        parts.extend(getattr(content, "parts", None) or getattr(candidate, "parts", None) or [])
    return parts


def _first_image_blob(candidates: Sequence[Any]) -> tuple[bytes, str | None] | None:
    for part in _iter_parts(candidates):
        inline_data = getattr(part, "inline_data", None)
        data = getattr(inline_data, "data", None) if inline_data else None
        if not data:
            continue
        if isinstance(data, str):
            data = data.encode("latin1")
        if isinstance(data, (bytes, bytearray)):
            return bytes(data), getattr(inline_data, "mime_type", None)
    return None


def _extract_text(response: Any) -> str:
    text = getattr(response, "text", None)
    if isinstance(text, str) and text.strip():
        return _clean_description(text)
    chunks: list[str] = []
    for part in _iter_parts(getattr(response, "candidates", None) or []):
        chunk = getattr(part, "text", None)
        if isinstance(chunk, str) and chunk.strip():
            chunks.append(chunk.strip())
    return _clean_description(" ".join(chunks))


def _clean_description(text: str) -> str:
    cleaned = " ".join(str(text or "").split())
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {"\"", "'"}:
        cleaned = cleaned[1:-1].strip()
    return cleaned
