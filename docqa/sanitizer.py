"""Text sanitization applied before anything is chunked or stored."""
import re

# C0 controls except tab, newline and carriage return, plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE_RUN = re.compile(r"\s+")


def sanitize_text(text: str, collapse_whitespace: bool = False) -> str:
    """Strip characters the store cannot hold.

    Args:
        text: Raw text
        collapse_whitespace: Also fold whitespace runs into single spaces
            (destroys paragraph structure, so only for single-line fields)

    Returns:
        Sanitized text, trimmed
    """
    if not text:
        return ""

    sanitized = _CONTROL_CHARS.sub("", text)

    if collapse_whitespace:
        sanitized = _WHITESPACE_RUN.sub(" ", sanitized)

    return sanitized.strip()
