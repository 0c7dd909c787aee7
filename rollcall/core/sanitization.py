"""Input sanitization utilities."""
import re
from typing import Optional

from rollcall.core.exceptions import ValidationError


# Maximum length constraints for security
MAX_LABEL_LENGTH = 100        # Class/topic identifiers such as "CS101"


def sanitize_text(text: str, max_length: Optional[int] = None, strip_html: bool = True) -> str:
    """
    Sanitize free text input.

    Strips HTML tags and normalizes whitespace. Entities are not escaped
    because clients escape output when rendering.

    Args:
        text: The input text to sanitize
        max_length: Optional maximum length to enforce
        strip_html: Whether to strip HTML tags (default True)

    Returns:
        Sanitized text with HTML tags removed and whitespace normalized

    Raises:
        ValidationError: If text exceeds max_length or contains dangerous patterns
    """
    if not isinstance(text, str):
        raise ValidationError("Input must be a string")

    sanitized = text.strip()

    if max_length and len(sanitized) > max_length:
        raise ValidationError(f"Input exceeds maximum length of {max_length} characters")

    if strip_html:
        sanitized = re.sub(r'<[^>]*>', '', sanitized)

    # Reject inputs that still contain HTML-like patterns after stripping
    if '<' in sanitized or '>' in sanitized:
        raise ValidationError("Input contains invalid HTML-like patterns")

    sanitized = re.sub(r'\s+', ' ', sanitized)

    return sanitized


def sanitize_label(label: str) -> str:
    """
    Sanitize a session label (class or topic identifier).

    Raises:
        ValidationError: If the label is empty or too long
    """
    sanitized = sanitize_text(label, max_length=MAX_LABEL_LENGTH)

    if not sanitized:
        raise ValidationError("Label cannot be empty")

    return sanitized


def normalize_code(code: Optional[str]) -> str:
    """
    Normalize a verification code entry for comparison.

    Comparison is case-insensitive and ignores surrounding whitespace, so the
    entry is trimmed and upper-cased. An empty result is returned as-is; the
    caller decides what an empty entry means.
    """
    if code is None:
        return ""
    if not isinstance(code, str):
        raise ValidationError("Code must be a string")
    return code.strip().upper()
