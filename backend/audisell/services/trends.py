"""Admin trend analysis over what users recorded in a period."""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlmodel import Session, col, select

from audisell.core.clock import utcnow
from audisell.models.carousel import Carousel
from audisell.models.trend_report import TrendReport
from audisell.models.user import User
from audisell.services.ai_content import client_gemini
from audisell.services.scripts import strip_code_fences

log = logging.getLogger(__name__)

PERIODS = (7, 30, 90)
FETCH_LIMIT = 200
MAX_TRANSCRIPTIONS = 100
MIN_TRANSCRIPTION_CHARS = 50
TRUNCATE_CHARS = 500
MIN_COMBINED_CHARS = 100
TREND_DELTA = 5
COST_PER_1K_TOKENS = 0.00015

ANALYSIS_PROMPT = """Você é um analista de dados especializado em tendências de conteúdo digital.
Analise as transcrições de carrosséis do Instagram fornecidas e extraia insights estruturados.

REGRAS:
- Identifique padrões e tendências nos conteúdos
- Agrupe por categorias semânticas
- Calcule percentuais aproximados
- Identifique o tom de voz predominante
- Extraia keywords relevantes
- Aponte lacunas de conteúdo (temas pouco explorados)
- Forneça um resumo executivo

FORMATO DE RESPOSTA (JSON válido):
{
  "topics": [
    {"name": "Nome do Tópico", "count": 10, "percentage": 25, "examples": ["exemplo1", "exemplo2"]}
  ],
  "niches": [
    {"name": "Nome do Nicho", "count": 8, "percentage": 20}
  ],
  "tones": [
    {"name": "Profissional|Casual|Motivacional|Educativo|Vendas", "count": 15, "percentage": 37}
  ],
  "sentiments": [
    {"name": "Positivo|Neutro|Urgente|Inspirador", "count": 12, "percentage": 30}
  ],
  "keywords": [
    {"word": "palavra", "count": 5, "category": "categoria"}
  ],
  "content_gaps": ["Tema pouco explorado 1", "Tema pouco explorado 2"],
  "summary": "Resumo executivo de 2-3 parágrafos sobre as tendências identificadas",
  "recommendations": [
    "Recomendação 1 para o produto baseada nos dados",
    "Recomendação 2",
    "Recomendação 3"
  ]
}

Analise os seguintes conteúdos:"""


class TrendAnalysisError(ValueError):
    pass


def _admin_user_ids(session: Session) -> List[UUID]:
    rows = session.exec(
        select(User.id).where(or_(col(User.role).in_(("admin", "superadmin")), User.is_admin == True))  # noqa: E712
    ).all()
    return list(rows)


def collect_transcriptions(session: Session, period_days: int, now: Optional[datetime] = None) -> tuple[List[Carousel], str]:
    """Recent non-admin transcriptions long enough to analyse, and their numbered block."""
    now = now or utcnow()
    start = now - timedelta(days=period_days)
    stmt = (
        select(Carousel)
        .where(Carousel.created_at >= start, Carousel.created_at <= now)
        .where(col(Carousel.transcription).is_not(None))
        .order_by(col(Carousel.created_at).desc())
        .limit(FETCH_LIMIT)
    )
    admin_ids = _admin_user_ids(session)
    if admin_ids:
        stmt = stmt.where(col(Carousel.user_id).not_in(admin_ids))
    carousels = list(session.exec(stmt).all())

    kept = [c for c in carousels if c.transcription and len(c.transcription) > MIN_TRANSCRIPTION_CHARS]
    kept = kept[:MAX_TRANSCRIPTIONS]
    combined = "\n\n---\n\n".join(
        f"[{i + 1}] {c.transcription[:TRUNCATE_CHARS]}" for i, c in enumerate(kept)
    )
    return kept, combined


def compute_evolution(current: Dict[str, Any], previous: Optional[Dict[str, Any]]) -> Dict[str, list]:
    """Compare topic percentages with the previous report (+/- 5 points is stable)."""
    evolution: Dict[str, list] = {"growing": [], "declining": [], "stable": [], "new": []}
    if not previous:
        return evolution
    prev = {
        str(t.get("name", "")).lower(): float(t.get("percentage") or 0)
        for t in previous.get("topics") or []
        if isinstance(t, dict)
    }
    for topic in current.get("topics") or []:
        if not isinstance(topic, dict):
            continue
        name = str(topic.get("name", "")).lower()
        pct = float(topic.get("percentage") or 0)
        before = prev.get(name)
        if before is None:
            evolution["new"].append({"name": name, "percentage": pct})
        elif pct > before + TREND_DELTA:
            evolution["growing"].append({"name": name, "from": before, "to": pct, "change": pct - before})
        elif pct < before - TREND_DELTA:
            evolution["declining"].append({"name": name, "from": before, "to": pct, "change": pct - before})
        else:
            evolution["stable"].append({"name": name, "percentage": pct})
    return evolution


def analyze_trends(session: Session, period_days: int, created_by: Optional[UUID] = None) -> TrendReport:
    if period_days not in PERIODS:
        raise TrendAnalysisError("Invalid period. Use 7, 30, or 90 days.")

    started = time.monotonic()
    now = utcnow()
    carousels, combined = collect_transcriptions(session, period_days, now)
    if not carousels:
        raise TrendAnalysisError("No carousels found in the selected period")
    if len(combined) < MIN_COMBINED_CHARS:
        raise TrendAnalysisError("Not enough content to analyze")

    log.info("[trends] analyzing period=%sd carousels=%d chars=%d", period_days, len(carousels), len(combined))
    result = client_gemini.generate_with_usage(
        combined,
        system_instruction=ANALYSIS_PROMPT,
        temperature=0.3,
        max_output_tokens=4000,
        response_mime_type="application/json",
    )
    try:
        analysis = json.loads(strip_code_fences(result.text))
    except ValueError as exc:
        raise RuntimeError("Invalid JSON response from the analysis model") from exc
    if not isinstance(analysis, dict):
        raise RuntimeError("Invalid JSON response from the analysis model")

    previous = session.exec(
        select(TrendReport)
        .where(TrendReport.period_days == period_days)
        .order_by(col(TrendReport.created_at).desc())
    ).first()
    evolution = compute_evolution(analysis, previous.report if previous else None)

    tokens = result.tokens_total
    analysis["sample_transcriptions"] = [
        {"id": str(c.id), "preview": (c.transcription or "")[:200] + "...", "tone": c.tone.value}
        for c in carousels[:5]
    ]
    report = TrendReport(
        period_days=period_days,
        period_start=now - timedelta(days=period_days),
        period_end=now,
        carousels_analyzed=len(carousels),
        report=analysis,
        evolution=evolution,
        tokens_used=tokens,
        estimated_cost_usd=round(tokens * COST_PER_1K_TOKENS / 1000, 6),
        created_by=created_by,
    )
    session.add(report)
    session.commit()
    session.refresh(report)
    log.info(
        "event=trends.completed report=%s carousels=%d tokens=%d elapsed_ms=%d",
        report.id, len(carousels), tokens, int((time.monotonic() - started) * 1000),
    )
    return report
