"""Slide script generation: transcription in, ``{"slides": [...]}`` JSON out."""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional, Union
from uuid import UUID

from audisell.core import database
from audisell.models.usage import ApiName, UsageAction
from audisell.services import guardrails, prompts
from audisell.services.ai_content import client_gemini
from audisell.services.usage import log_usage_event, record_api_usage

log = logging.getLogger(__name__)

TEXT_MODES = ("compact", "creative", "single")
CREATIVE_TONES = ("emotional", "professional", "provocative")
TEMPLATES = ("solid", "gradient", "image_top")

MIN_SLIDES = 1
MAX_SLIDES = 12
FALLBACK_SLIDES = 6
FALLBACK_CHUNK = 80

LANGUAGE_LINES = {
    "pt-BR": "Escreva em português brasileiro.",
    "es": "Escribe en español.",
}

TEMPLATE_HINTS = {
    "gradient": "Os slides terão imagem IA de fundo com overlay gradiente.",
    "image_top": "Os slides terão imagem IA no topo e texto na área inferior.",
    "solid": "Os slides terão fundo sólido (preto ou branco).",
}

_FENCE_RE = re.compile(r"```(?:json)?\n?")


def resolve_slide_count(text_mode: str, slide_count: int, slide_count_mode: str) -> Union[int, str]:
    """1 for single mode, the clamped request for manual mode, otherwise ``"auto"``."""
    if text_mode == "single":
        return 1
    if slide_count_mode == "manual":
        return max(MIN_SLIDES, min(MAX_SLIDES, int(slide_count or FALLBACK_SLIDES)))
    return "auto"


def slide_structure(count: Union[int, str], text_mode: str) -> str:
    if text_mode == "single":
        return "ESTRUTURA (1 slide único):\n1. CONTENT: Texto completo e fluido (até 200 palavras)"
    if count == "auto":
        return "ESTRUTURA AUTOMÁTICA: A IA decidirá o número ideal de slides (entre 4 e 8) baseado no conteúdo."
    if count <= 4:
        lines = [f"ESTRUTURA ({count} slides):", "1. HOOK: Abertura impactante que prende atenção"]
        if count >= 2:
            lines.append("2. CONTENT: Desenvolvimento principal")
        if count >= 3:
            lines.append("3. CONTENT: Continuação ou exemplos")
        if count >= 4:
            lines.append("4. CTA: Chamada para ação ou reflexão final")
        return "\n".join(lines)
    return "\n".join([
        f"ESTRUTURA ({count} slides):",
        "1. HOOK: Abertura impactante que prende atenção",
        f"2-{count - 2}. CONTENT: Desenvolvimento do conteúdo (divida de forma equilibrada)",
        f"{count - 1}. CTA: Chamada para ação",
        f"{count}. SIGNATURE: Nome do autor + @instagram",
    ])


def words_per_slide(count: Union[int, str], text_mode: str) -> str:
    if text_mode == "single":
        return "150-200 palavras no slide único"
    if count == "auto":
        return "15-35 palavras por slide"
    if count <= 4:
        return "20-40 palavras por slide"
    if count <= 6:
        return "15-35 palavras por slide"
    return "10-30 palavras por slide"


def build_system_prompt(
    text_mode: str,
    creative_tone: str,
    count: Union[int, str],
    template: str,
    language: str,
) -> str:
    style = prompts.get_mode_instructions(text_mode) or prompts.MODE_COMPACT
    if text_mode == "creative":
        style = f"{style}\n\n{prompts.get_tone_prompt(creative_tone) or prompts.TONE_PROFESSIONAL}"
    tone_label = creative_tone if text_mode == "creative" else "none"
    return f"""{prompts.get_guardrails(language)}

Você é um especialista em criação de carrosséis para Instagram.

{LANGUAGE_LINES.get(language, "Write in English.")}

{style}

{slide_structure(count, text_mode)}

REGRAS DE FORMATAÇÃO:
- {words_per_slide(count, text_mode)}
- Frases curtas e impactantes
- Evite parágrafos longos

CONTEXTO DO TEMPLATE:
{TEMPLATE_HINTS.get(template, TEMPLATE_HINTS["solid"])}

Você deve retornar APENAS um JSON válido no seguinte formato (sem markdown, sem código, apenas JSON puro):
{{
  "textMode": "{text_mode}",
  "creativeTone": "{tone_label}",
  "slides": [
    {{"number": 1, "type": "HOOK|CONTENT|CTA|SIGNATURE", "text": "Texto do slide"}}
  ],
  "total_slides": <número de slides gerados>
}}"""


def build_user_prompt(transcription: str, count: Union[int, str]) -> str:
    wrapped = guardrails.wrap_user_content(transcription)
    if count == "auto":
        return (
            "Transforme esta transcrição em um carrossel seguindo as regras acima. "
            f"Decida o número ideal de slides (entre 4 e 8):\n{wrapped}"
        )
    plural = "s" if count > 1 else ""
    return f"Transforme esta transcrição em exatamente {count} slide{plural} seguindo as regras acima:\n{wrapped}"


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def fallback_script(transcription: str, text_mode: str, creative_tone: str, count: Union[int, str]) -> Dict[str, Any]:
    """Deterministic script used when the model output cannot be used."""
    tone_label = creative_tone if text_mode == "creative" else "none"
    if text_mode == "single":
        return {
            "textMode": text_mode,
            "creativeTone": tone_label,
            "slides": [{"number": 1, "type": "CONTENT", "text": transcription[:500]}],
            "total_slides": 1,
        }

    total = count if isinstance(count, int) else FALLBACK_SLIDES
    slides = []
    for i in range(total):
        if i == 0:
            slide_type, text = "HOOK", "Conteúdo gerado"
        else:
            slide_type = "CTA" if i == total - 1 else "CONTENT"
            text = transcription[i * FALLBACK_CHUNK:(i + 1) * FALLBACK_CHUNK] or "Continuação"
        slides.append({"number": i + 1, "type": slide_type, "text": text})
    return {"textMode": text_mode, "creativeTone": tone_label, "slides": slides, "total_slides": total}


def _parse_script(raw: str) -> Optional[Dict[str, Any]]:
    cleaned = strip_code_fences(raw)
    is_valid, issues = guardrails.validate_ai_output(cleaned)
    if not is_valid:
        log.warning("event=script.output_rejected issues=%s", issues[:5])
        return None
    script = json.loads(cleaned)
    script.setdefault("total_slides", len(script["slides"]))
    return script


def generate_script(
    transcription: str,
    text_mode: str = "compact",
    creative_tone: str = "professional",
    slide_count: int = 6,
    slide_count_mode: str = "auto",
    template: str = "solid",
    language: str = "pt-BR",
    *,
    user_id: Optional[UUID] = None,
    carousel_id: Optional[UUID] = None,
) -> Dict[str, Any]:
    """Turn a transcription into a slide script.

    The transcription is sanitised and fenced before it reaches the model.
    Unparseable or unsafe output falls back to :func:`fallback_script`.
    """
    if not (transcription or "").strip():
        raise ValueError("No transcription provided")
    if text_mode not in TEXT_MODES:
        raise ValueError(f"Unknown text mode: {text_mode}")
    if creative_tone not in CREATIVE_TONES:
        raise ValueError(f"Unknown creative tone: {creative_tone}")
    if template not in TEMPLATES:
        raise ValueError(f"Unknown template: {template}")

    count = resolve_slide_count(text_mode, slide_count, slide_count_mode)
    sanitized = guardrails.sanitize_user_input(transcription)
    if sanitized.detected_patterns:
        log.warning(
            "event=script.injection_detected user=%s risk=%s patterns=%d",
            user_id, sanitized.risk_level, len(sanitized.detected_patterns),
        )
        with database.session_scope() as session:
            log_usage_event(
                session,
                UsageAction.SECURITY_EVENT.value,
                user_id=user_id,
                status="warning",
                details=guardrails.create_security_event(
                    user_id,
                    "injection_attempt",
                    {"patterns": sanitized.detected_patterns[:20], "carousel_id": str(carousel_id) if carousel_id else None},
                    sanitized.risk_level,
                ),
            )

    log.info(
        "[script] generating mode=%s tone=%s slides=%s template=%s language=%s",
        text_mode, creative_tone, count, template, language,
    )
    result = client_gemini.generate_with_usage(
        build_user_prompt(sanitized.sanitized_text, count),
        system_instruction=build_system_prompt(text_mode, creative_tone, count, template, language),
        temperature=0.7,
    )

    with database.session_scope() as session:
        record_api_usage(
            session,
            user_id=user_id,
            carousel_id=carousel_id,
            action="generate_script",
            api_name=ApiName.gemini,
            tokens_input=result.tokens_input,
            tokens_output=result.tokens_output,
        )

    script = _parse_script(result.text)
    if script is None:
        script = fallback_script(transcription, text_mode, creative_tone, count)
    log.info("event=script.generated slides=%d model=%s", len(script.get("slides") or []), result.model)
    return script
