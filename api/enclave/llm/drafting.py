"""Schema-validated generation helpers for drafting, editing and answering.

The generation service is untrusted: every JSON reply is parsed
best-effort, validated against a pydantic model and rejected on any
mismatch.  Callers receive ``None`` on rejection and fall back to
deterministic text.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from enclave.core.errors import GenerationFailure
from enclave.llm.prompts import (
    announcement_prompt,
    answer_prompt,
    answer_system,
    drafting_system,
    edit_prompt,
    format_evidence_block,
    poll_prompt,
)

logger = logging.getLogger("enclave.llm.drafting")

M = TypeVar("M", bound=BaseModel)


class AnnouncementOut(BaseModel):
    body: str = Field(min_length=1, max_length=1600)

    @field_validator("body")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("empty body")
        return v


class PollOut(BaseModel):
    question: str = Field(min_length=1, max_length=300)
    options: list[str] = Field(min_length=2, max_length=6)

    @field_validator("options")
    @classmethod
    def _clean_options(cls, v: list[str]) -> list[str]:
        cleaned = [o.strip() for o in v if o and o.strip()]
        if len(cleaned) < 2:
            raise ValueError("need at least two options")
        return cleaned


class AnswerOut(BaseModel):
    found: bool
    answer: str = ""


def _parse_json(raw: str) -> dict | None:
    """Best-effort JSON parse from LLM output."""
    cleaned = re.sub(r"```(?:json)?\s*", "", raw).strip().rstrip("`")
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            return None
        try:
            parsed = json.loads(match.group())
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _numbers(text: str) -> set[str]:
    return set(re.findall(r"\d+", text))


def keeps_facts(original: str, rewritten: str) -> bool:
    """Every number in *original* (times, dates, rooms) must survive the rewrite."""
    return _numbers(original) <= _numbers(rewritten)


async def generate_model(
    generator, schema: type[M], prompt: str, *, system: str | None = None
) -> M | None:
    if generator is None:
        return None
    try:
        raw = await generator.generate_json(prompt, system=system)
    except GenerationFailure as exc:
        logger.warning("Generation unavailable for %s: %s", schema.__name__, exc)
        return None
    parsed = _parse_json(raw)
    if parsed is None:
        logger.warning("Generation returned non-JSON for %s", schema.__name__)
        return None
    try:
        return schema.model_validate(parsed)
    except ValidationError as exc:
        logger.warning("Generation failed %s validation: %s", schema.__name__, exc.errors()[:3])
        return None


async def polish_announcement(generator, content: str, tone: str = "casual") -> str:
    """Rewrite *content* as an SMS; the raw content is returned on any failure."""
    out = await generate_model(
        generator, AnnouncementOut, announcement_prompt(content, tone), system=drafting_system()
    )
    if out is None or not keeps_facts(content, out.body):
        return content
    return out.body


async def suggest_poll(generator, content: str) -> PollOut | None:
    out = await generate_model(generator, PollOut, poll_prompt(content), system=drafting_system())
    if out is None or not keeps_facts(content, out.question):
        return None
    return out


async def apply_edit(generator, current: str, instruction: str) -> str | None:
    out = await generate_model(
        generator, AnnouncementOut, edit_prompt(current, instruction), system=drafting_system()
    )
    return out.body if out is not None else None


async def summarize_answer(generator, question: str, texts: list[str]) -> str | None:
    """Grounded short answer, or None when generation fails or finds nothing."""
    if not texts:
        return None
    out = await generate_model(
        generator,
        AnswerOut,
        answer_prompt(question, format_evidence_block(texts)),
        system=answer_system(),
    )
    if out is None or not out.found or not out.answer.strip():
        return None
    return out.answer.strip()
