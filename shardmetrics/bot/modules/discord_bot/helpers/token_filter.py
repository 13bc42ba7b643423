from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional


def sanitize(text: str, tokens: Dict[str, str]) -> str:
    for token, replacement in tokens.items():
        if token:
            text = text.replace(token, replacement)
    return text


class TokenFilter(logging.Filter):
    """Replace secrets in log records with placeholders like ``%bot_token%``."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        super().__init__()
        self.tokens: Dict[str, str] = {t: r for t, r in (tokens or {}).items() if t}

    def add(self, token: Optional[str], replacement: str) -> None:
        if token:
            self.tokens[token] = replacement

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.tokens:
            return True
        msg = record.getMessage()
        clean = sanitize(msg, self.tokens)
        if clean != msg:
            record.msg = clean
            record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = sanitize(record.exc_text, self.tokens)
        return True


def install(token_filter: TokenFilter, handlers: Optional[Iterable[logging.Handler]] = None) -> TokenFilter:
    """Attach the filter to the given handlers (default: the root logger's)."""
    for h in handlers if handlers is not None else logging.getLogger().handlers:
        h.addFilter(token_filter)
    return token_filter
