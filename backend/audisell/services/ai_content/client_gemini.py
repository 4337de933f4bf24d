from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from audisell.core.config import settings

_log = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY = 2.0  # seconds


@dataclass
class GenerationResult:
    text: str
    model: str
    tokens_input: Optional[int] = None
    tokens_output: Optional[int] = None

    @property
    def tokens_total(self) -> int:
        return (self.tokens_input or 0) + (self.tokens_output or 0)


def _stub_mode() -> bool:
    """Return True if we should operate in stub mode.

    Read on every call so tests (or late environment injection) take effect
    without a reload.
    """
    return (os.getenv("AI_STUB_MODE") or "").strip() == "1"


def _model_name() -> str:
    name = os.getenv("GEMINI_MODEL") or settings.GEMINI_MODEL or "gemini-2.5-flash"
    # Accept legacy forms like "models/gemini-2.5-flash"
    if name.startswith("models/"):
        name = name.split("/", 1)[1]
    return name


def _generation_config(kwargs: Dict[str, Any]) -> Dict[str, Any]:
    gen_conf: Dict[str, Any] = {}
    for key in ("max_tokens", "max_output_tokens"):
        if kwargs.get(key) is not None:
            gen_conf["max_output_tokens"] = int(kwargs.pop(key))
        kwargs.pop(key, None)
    for key in ("temperature", "top_p", "top_k", "response_mime_type"):
        if kwargs.get(key) is not None:
            gen_conf[key] = kwargs.pop(key)
        kwargs.pop(key, None)
    return gen_conf


def generate_with_usage(content: str, **kwargs) -> GenerationResult:
    """Generate text with Gemini and report token usage when the API returns it.

    Supported kwargs: system_instruction, max_tokens/max_output_tokens,
    temperature, top_p, top_k, response_mime_type.

    429/quota errors are retried with exponential backoff (2s, 4s).
    """
    model_name = _model_name()
    api_key = os.getenv("GEMINI_API_KEY") or settings.GEMINI_API_KEY
    if not api_key:
        if _stub_mode():
            return GenerationResult(text="Stub output (Gemini disabled)", model="stub")
        raise RuntimeError("GEMINI_API_KEY not set in environment")

    genai.configure(api_key=api_key)
    system_instruction = kwargs.pop("system_instruction", None)
    gen_conf = _generation_config(kwargs)
    model = (
        genai.GenerativeModel(model_name=model_name, system_instruction=system_instruction)
        if system_instruction
        else genai.GenerativeModel(model_name=model_name)
    )

    for attempt in range(MAX_RETRIES):
        start = time.time()
        try:
            resp = model.generate_content(content, generation_config=gen_conf or None)
        except google_exceptions.ResourceExhausted as e:
            if attempt < MAX_RETRIES - 1:
                delay = BASE_DELAY * (2 ** attempt)
                _log.warning(
                    "[gemini] Rate limit hit (429), retrying in %.1fs (attempt %d/%d)",
                    delay, attempt + 1, MAX_RETRIES,
                )
                time.sleep(delay)
                continue
            _log.error("[gemini] Rate limit exceeded after %d retries", MAX_RETRIES)
            raise RuntimeError("GEMINI_RATE_LIMIT_EXCEEDED") from e
        except google_exceptions.NotFound as e:
            raise RuntimeError("AI_MODEL_NOT_FOUND") from e

        if not getattr(resp, "candidates", None):
            block_reason = getattr(getattr(resp, "prompt_feedback", None), "block_reason", None)
            raise RuntimeError(f"GEMINI_CONTENT_BLOCKED:{block_reason}")

        usage = getattr(resp, "usage_metadata", None)
        result = GenerationResult(
            text=getattr(resp, "text", "") or "",
            model=model_name,
            tokens_input=getattr(usage, "prompt_token_count", None),
            tokens_output=getattr(usage, "candidates_token_count", None),
        )
        _log.info(
            "event=gemini.generate model=%s content_len=%d tokens_in=%s tokens_out=%s elapsed_ms=%d",
            model_name, len(content), result.tokens_input, result.tokens_output,
            int((time.time() - start) * 1000),
        )
        return result

    raise RuntimeError("GEMINI_RATE_LIMIT_EXCEEDED")


def generate(content: str, **kwargs) -> str:
    """Generate text using Gemini; returns only the text."""
    return generate_with_usage(content, **kwargs).text
