"""Marketing copy translation (pt-BR source) through Gemini."""
import logging

from audisell.services.ai_content import client_gemini

log = logging.getLogger(__name__)

TARGET_LANGUAGES = {"en": "English", "es": "Spanish"}

CONTEXT_INSTRUCTIONS = {
    "faq": "This is FAQ content for a SaaS product (Audisell - audio to carousel converter).",
    "testimonial": "This is a customer testimonial for a SaaS product.",
    "landing_page": "This is marketing content for a landing page of a SaaS product (Audisell - audio to carousel converter).",
}

SYSTEM_PROMPT = """You are a professional translator specialized in marketing and SaaS content.
{context}

RULES:
- Translate from Portuguese (Brazil) to {language}
- Maintain the original tone and style
- Keep brand names unchanged (Audisell, Instagram, etc.)
- Preserve any HTML tags or special formatting
- Keep technical terms accurate
- Make the translation sound natural, not literal
- Do NOT add any explanations, just return the translated text"""


def translate_text(text: str, target_language: str, context: str = "landing_page") -> str:
    if not (text or "").strip():
        raise ValueError("No text provided")
    language = TARGET_LANGUAGES.get(target_language)
    if language is None:
        raise ValueError('Invalid target language. Use "en" or "es"')

    system = SYSTEM_PROMPT.format(
        context=CONTEXT_INSTRUCTIONS.get(context, CONTEXT_INSTRUCTIONS["landing_page"]),
        language=language,
    )
    translated = client_gemini.generate(
        f"Translate the following text to {language}:\n\n{text}",
        system_instruction=system,
        temperature=0.3,
    ).strip()
    log.info(
        "event=translation.completed target=%s context=%s in_len=%d out_len=%d",
        target_language, context, len(text), len(translated),
    )
    return translated
