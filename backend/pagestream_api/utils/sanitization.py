"""HTML sanitization"""

import html
import re

import bleach

WHITESPACE = re.compile(r"\s+")


def strip_markup(text: str) -> str:
    """
    Remove any HTML the model put into a text field.

    Returns plain text (entities decoded) so that escape_html at render time
    produces exactly one level of escaping.
    """
    if not text:
        return ""
    cleaned = bleach.clean(text, tags=[], attributes={}, strip=True, strip_comments=True)
    return WHITESPACE.sub(" ", html.unescape(cleaned)).strip()


def escape_html(text) -> str:
    """Escape &, <, >, double and single quotes for element content and attributes"""
    if text is None:
        return ""
    return html.escape(str(text), quote=True)
