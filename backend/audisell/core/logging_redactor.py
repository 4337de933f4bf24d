"""Masks personal data and credentials in log messages before any handler sees them."""
from __future__ import annotations

import logging
import re
from typing import Callable, Union

MASK = "***"

_Replacement = Union[str, Callable[["re.Match[str]"], str]]


def _mask_email(match: "re.Match[str]") -> str:
    # Keep the domain; it helps tell gmail users from corporate ones in support logs
    return f"{match.group(1)[:1]}{MASK}@{match.group(2)}"


RULES: list[tuple["re.Pattern[str]", _Replacement]] = [
    (re.compile(r"(?im)^(authorization:\s*).+$"), rf"\1{MASK}"),
    (re.compile(r"(?i)\bbearer\s+[\w.~+/-]+=*"), f"Bearer {MASK}"),
    (re.compile(r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]{8,}"), MASK),
    (re.compile(r"\bwhsec_[A-Za-z0-9]{8,}"), MASK),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{16,}"), MASK),
    (re.compile(r"\bAIza[0-9A-Za-z_-]{30,}"), MASK),
    (re.compile(r"(?i)\b(api[_-]?key|token|password)(\s*[=:]\s*)[^\s&,;]{6,}"), rf"\1\2{MASK}"),
    (re.compile(r"\b([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b"), _mask_email),
]


def redact(text: str) -> str:
    for pattern, replacement in RULES:
        text = pattern.sub(replacement, text)
    return text


class RedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # Bad %-args; let the handler report it
            return True
        cleaned = redact(message)
        if cleaned != message:
            record.msg, record.args = cleaned, ()
        return True


def install_redaction_filter(logger: logging.Logger | None = None) -> RedactionFilter:
    """Attach a filter to ``logger`` (root by default) and its current handlers."""
    target = logger or logging.getLogger()
    filt = RedactionFilter()
    target.addFilter(filt)
    for handler in target.handlers:
        handler.addFilter(filt)
    return filt
