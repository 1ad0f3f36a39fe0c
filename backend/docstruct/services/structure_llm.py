from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from docstruct.core.config import DEFAULT_STRUCTURE_PROMPT, settings
from docstruct.schemas.structure import (
    RawSpan,
    StructureProposal,
    get_structure_json_schema,
)
from docstruct.services.spans import parse_raw_spans


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_COMPLETION_PATH = "/chat/completions"


class StructureLlmError(RuntimeError):
    """Raised when the structure model cannot produce a usable proposal."""


def _system_prompt() -> str:
    prompt = settings.structure_llm_system_prompt
    if isinstance(prompt, str) and prompt.strip():
        return prompt.strip()
    return DEFAULT_STRUCTURE_PROMPT


def _build_messages(text: str, *, chunk_index: int, total_chunks: int) -> list[dict[str, str]]:
    if total_chunks > 1:
        scope = (
            f"This is part {chunk_index + 1} of {total_chunks} of a longer document. "
            "Only describe nodes that begin inside this part."
        )
    else:
        scope = "This is the complete document."
    user_prompt = (
        f"{scope}\n"
        "Return JSON with a 'nodes' array. Copy anchors verbatim from the text below.\n\n"
        "--- DOCUMENT START ---\n"
        f"{text}\n"
        "--- DOCUMENT END ---"
    )
    return [
        {"role": "system", "content": _system_prompt()},
        {"role": "user", "content": user_prompt},
    ]


async def propose_spans(
    text: str, *, chunk_index: int = 0, total_chunks: int = 1
) -> List[RawSpan]:
    """Ask the structure model for an outline of ``text``.

    Raises :class:`StructureLlmError` when the model is unavailable or its
    answer cannot be parsed, and ``SpanValidationError`` for spans missing a
    title or anchors.
    """

    messages = _build_messages(text, chunk_index=chunk_index, total_chunks=total_chunks)
    raw_content = await _invoke_llm(messages)
    payload = _parse_json(raw_content)
    try:
        proposal = StructureProposal.model_validate(payload)
    except ValidationError as exc:
        raise StructureLlmError(f"Structure proposal has an unexpected shape: {exc}") from exc

    spans = parse_raw_spans(proposal.nodes)
    logger.info(
        "[llm] chunk %s/%s proposed %s nodes",
        chunk_index + 1,
        total_chunks,
        len(spans),
    )
    return spans


def _parse_json(raw: str) -> dict[str, Any]:
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise StructureLlmError(f"Structure model returned invalid JSON: {exc}") from exc
    if isinstance(parsed, list):
        return {"nodes": parsed}
    if not isinstance(parsed, dict):
        raise StructureLlmError("Structure model returned a non-object payload")
    return parsed


async def _invoke_llm(
    messages: Sequence[dict[str, str]], *, temperature: Optional[float] = None
) -> str:
    model = settings.structure_llm_model
    if not model:
        raise StructureLlmError("Structure LLM model is not configured")

    base_url = (settings.structure_llm_base_url or DEFAULT_BASE_URL).rstrip("/")
    path = (settings.structure_llm_completion_path or DEFAULT_COMPLETION_PATH).lstrip("/")
    url = f"{base_url}/{path}" if path else base_url

    payload: dict[str, Any] = {
        "model": model,
        "messages": list(messages),
        "temperature": (
            temperature if temperature is not None else settings.structure_llm_temperature
        ),
        "max_tokens": settings.structure_llm_max_output_tokens,
    }
    if settings.structure_llm_force_json:
        payload["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": "document_structure",
                "schema": get_structure_json_schema(),
            },
        }
    else:
        payload["response_format"] = {"type": "json_object"}

    headers = {"Content-Type": "application/json"}
    if settings.openai_api_key:
        headers["Authorization"] = f"Bearer {settings.openai_api_key}"
    if settings.openai_organization:
        headers["OpenAI-Organization"] = settings.openai_organization

    timeout = httpx.Timeout(float(settings.structure_llm_timeout_seconds or 120.0))
    max_retries = max(1, int(settings.structure_llm_retry_attempts or 1))

    async with httpx.AsyncClient(timeout=timeout) as client:
        attempt = 0
        response: Optional[httpx.Response] = None
        while attempt < max_retries:
            attempt += 1
            try:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                break
            except httpx.HTTPError as exc:
                logger.warning("[llm] structure request attempt %s failed: %s", attempt, exc)
                if attempt >= max_retries:
                    raise StructureLlmError(
                        f"Structure LLM request failed after {max_retries} attempts: {exc}"
                    ) from exc
                await asyncio.sleep(min(2.0, 0.5 * attempt))

        if response is None:
            raise StructureLlmError("Structure LLM request failed without response")

    try:
        data = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise StructureLlmError(f"Unexpected LLM response format: {exc}") from exc

    if not isinstance(content, str) or not content.strip():
        raise StructureLlmError("Structure LLM returned empty content")
    return content
