"""SMS text helpers: length-bounded splitting and TwiML rendering."""

from __future__ import annotations

from xml.sax.saxutils import escape

from enclave.core.config import ENCLAVE_SMS_MAX_LEN


def split_message(text: str, max_len: int = ENCLAVE_SMS_MAX_LEN) -> list[str]:
    """Split *text* into chunks of at most *max_len* chars.

    Breaks on the last blank line, newline or space before the limit and
    only cuts mid-word when a single word is longer than the limit.
    """
    text = text.strip()
    chunks: list[str] = []
    while len(text) > max_len:
        window = text[:max_len]
        cut = -1
        for sep in ("\n\n", "\n", " "):
            cut = window.rfind(sep)
            if cut > 0:
                break
        if cut <= 0:
            cut = max_len
        chunks.append(text[:cut].rstrip())
        text = text[cut:].lstrip()
    if text:
        chunks.append(text)
    return chunks


def to_twiml(messages: list[str], max_len: int = ENCLAVE_SMS_MAX_LEN) -> str:
    parts = [
        f"<Message>{escape(chunk)}</Message>"
        for message in messages
        for chunk in split_message(message, max_len)
    ]
    return '<?xml version="1.0" encoding="UTF-8"?><Response>' + "".join(parts) + "</Response>"
