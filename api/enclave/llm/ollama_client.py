"""Ollama generation client — call /api/generate with a timeout."""

from __future__ import annotations

import logging

import httpx

from enclave.core.config import (
    ENCLAVE_OLLAMA_MODEL,
    ENCLAVE_OLLAMA_TIMEOUT,
    ENCLAVE_OLLAMA_URL,
)
from enclave.core.errors import GenerationFailure

logger = logging.getLogger("enclave.llm.ollama")


class OllamaGenerator:
    """Text completion through a local Ollama server.

    Every failure (unreachable, timeout, HTTP error, malformed body) is
    raised as :class:`GenerationFailure` so callers can fall back to
    deterministic text.
    """

    def __init__(
        self,
        base_url: str = ENCLAVE_OLLAMA_URL,
        model: str = ENCLAVE_OLLAMA_MODEL,
        timeout: float = ENCLAVE_OLLAMA_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    async def ping(self) -> bool:
        """Return True if Ollama is reachable."""
        if not self.base_url:
            return False
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                r = await client.get(f"{self.base_url}/api/tags")
                return r.status_code == 200
        except httpx.HTTPError:
            return False

    async def _generate(self, body: dict, timeout: float | None) -> str:
        if not self.base_url:
            raise GenerationFailure("ENCLAVE_OLLAMA_URL not configured")
        try:
            async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
                r = await client.post(f"{self.base_url}/api/generate", json=body)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPError as exc:
            raise GenerationFailure(f"Ollama HTTP error: {exc}") from exc
        except ValueError as exc:
            raise GenerationFailure(f"Ollama returned invalid JSON: {exc}") from exc

        text = data.get("response", "") if isinstance(data, dict) else ""
        if not text.strip():
            raise GenerationFailure("Ollama returned an empty response")
        return text

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        timeout: float | None = None,
        num_predict: int | None = None,
    ) -> str:
        """Return the completion text for *prompt*."""
        body: dict = {"model": self.model, "prompt": prompt, "stream": False}
        if system:
            body["system"] = system
        if num_predict is not None:
            body.setdefault("options", {})["num_predict"] = num_predict
        return await self._generate(body, timeout)

    async def generate_json(
        self,
        prompt: str,
        *,
        system: str | None = None,
        timeout: float | None = None,
        num_predict: int | None = None,
    ) -> str:
        """Same as :meth:`generate` with JSON output requested. The text is NOT validated here."""
        body: dict = {"model": self.model, "prompt": prompt, "stream": False, "format": "json"}
        if system:
            body["system"] = system
        if num_predict is not None:
            body.setdefault("options", {})["num_predict"] = num_predict
        return await self._generate(body, timeout)
