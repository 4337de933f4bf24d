"""Prompt texts for script generation.

Admins can override any key through the ``aiprompt`` table; the defaults below
are used when no active row exists or the database cannot be read.
"""
import logging
import time
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from audisell.core import database
from audisell.models.prompt import AIPrompt
from audisell.services.guardrails import SYSTEM_GUARDRAILS

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 5 * 60

TONE_EMOTIONAL = """Você é roteirista de storytelling emocional para Instagram.

ESTILO:
- Linguagem íntima e confessional
- Use metáforas pessoais
- Frases curtas e impactantes
- Evite clichês corporativos
- Conecte-se emocionalmente com o leitor
- Comece com um HOOK emocional impactante (use Aversão à Perda)
- Termine com reflexão profunda ou convite à ação"""

TONE_PROFESSIONAL = """Você é consultor criando conteúdo educacional premium para Instagram.

ESTILO:
- Dados > Opinião (cite números quando possível)
- Use verbos de ação: "Implemente", "Analise", "Execute"
- Bullets para listas (máximo 3 itens)
- Tom profissional mas acessível
- Posicione como autoridade no assunto
- Comece com estatística surpreendente ou insight contraintuitivo
- Use o Círculo Dourado: Why → How → What"""

TONE_PROVOCATIVE = """Você é provocador intelectual que desafia convenções no Instagram.

ESTILO:
- Frases curtas e diretas (estilo "soco")
- Use perguntas retóricas
- Não suavize a mensagem
- Provocação inteligente, não ofensiva
- Quebre padrões de pensamento
- Comece com pergunta controversa que incomoda
- Mostre verdades que as pessoas evitam"""

MODE_COMPACT = """MODO COMPACTO:
- Mantenha o tom original do texto
- Apenas organize, reduza e divida em slides
- Não adicione dramatização ou mudanças de estilo
- Preserve a essência e linguagem do autor
- Foque em clareza e concisão"""

MODE_CREATIVE = """MODO CRIATIVO:
- Ajuste tom, ritmo e impacto conforme o estilo escolhido
- Adicione elementos de storytelling
- Use técnicas de copywriting
- Crie conexão emocional com o leitor"""

MODE_SINGLE = """MODO TEXTO ÚNICO:
- Gere apenas 1 slide com texto mais longo
- Estilo thread/post longo
- Mantenha fluidez narrativa
- Pode ter até 200 palavras"""

DEFAULT_PROMPTS: Dict[str, str] = {
    "tone_emotional": TONE_EMOTIONAL,
    "tone_professional": TONE_PROFESSIONAL,
    "tone_provocative": TONE_PROVOCATIVE,
    "mode_compact": MODE_COMPACT,
    "mode_creative": MODE_CREATIVE,
    "mode_single": MODE_SINGLE,
    "guardrails_pt_br": SYSTEM_GUARDRAILS["pt-BR"],
    "guardrails_en": SYSTEM_GUARDRAILS["en"],
    "guardrails_es": SYSTEM_GUARDRAILS["es"],
}

PROMPT_CATEGORIES = {
    "tone": ("tone_emotional", "tone_professional", "tone_provocative"),
    "mode": ("mode_compact", "mode_creative", "mode_single"),
    "guardrails": ("guardrails_pt_br", "guardrails_en", "guardrails_es"),
}

GUARDRAIL_KEYS = {
    "pt-BR": "guardrails_pt_br",
    "pt-PT": "guardrails_pt_br",
    "en": "guardrails_en",
    "es": "guardrails_es",
}

_cache: Optional[Dict[str, str]] = None
_cache_at: float = 0.0


def category_for(key: str) -> str:
    for category, keys in PROMPT_CATEGORIES.items():
        if key in keys:
            return category
    return "general"


def load_prompts(session: Optional[Session] = None) -> Dict[str, str]:
    """Return the merged prompt map (defaults overlaid with active DB rows)."""
    global _cache, _cache_at
    if _cache is not None and time.monotonic() - _cache_at < CACHE_TTL_SECONDS:
        return _cache

    prompts = dict(DEFAULT_PROMPTS)
    try:
        if session is None:
            with Session(database.engine) as own_session:
                rows = own_session.exec(select(AIPrompt).where(AIPrompt.is_active == True)).all()  # noqa: E712
        else:
            rows = session.exec(select(AIPrompt).where(AIPrompt.is_active == True)).all()  # noqa: E712
    except SQLAlchemyError as exc:
        logger.warning("[prompts] failed loading prompts, using defaults: %s", exc)
        return prompts

    for row in rows:
        if row.prompt:
            prompts[row.key] = row.prompt
    if rows:
        logger.info("[prompts] loaded %d prompt override(s) from database", len(rows))

    _cache = prompts
    _cache_at = time.monotonic()
    return prompts


def get_prompt(key: str, session: Optional[Session] = None) -> str:
    return load_prompts(session).get(key) or DEFAULT_PROMPTS.get(key, "")


def get_tone_prompt(tone: str, session: Optional[Session] = None) -> str:
    return get_prompt(f"tone_{tone}", session)


def get_mode_instructions(mode: str, session: Optional[Session] = None) -> str:
    return get_prompt(f"mode_{mode}", session)


def get_guardrails(language: Optional[str], session: Optional[Session] = None) -> str:
    return get_prompt(GUARDRAIL_KEYS.get(language or "", "guardrails_pt_br"), session)


def clear_prompt_cache() -> None:
    global _cache, _cache_at
    _cache = None
    _cache_at = 0.0
