"""Prompt templates for drafting, editing and answer summarization."""

from __future__ import annotations


def drafting_system() -> str:
    """System prompt shared by every drafting call."""
    return (
        "You write short SMS broadcasts for a small student organization. "
        "Keep the sender's facts exactly (times, dates, places, names). "
        "Never invent details. You always return valid JSON and nothing else."
    )


def announcement_prompt(content: str, tone: str = "casual") -> str:
    """Polish raw announcement content into a single SMS."""
    return (
        f"Content:\n{content[:1000]}\n\n"
        f"Rewrite the content above as one {tone} SMS announcement, under 320 characters. "
        f"Do not add facts that are not in the content.\n"
        f'Return STRICT JSON: {{"body": "string"}}'
    )


def poll_prompt(content: str) -> str:
    """Turn raw content into a poll question with options."""
    return (
        f"Content:\n{content[:1000]}\n\n"
        f"Turn the content above into one short poll question a member can answer by text. "
        f"Suggest 2-4 short answer options.\n"
        f'Return STRICT JSON: {{"question": "string", "options": ["string", "..."]}}'
    )


def edit_prompt(current: str, instruction: str) -> str:
    """Apply a free-form edit instruction to an existing draft."""
    return (
        f"Current draft:\n{current[:1000]}\n\n"
        f"Edit instruction:\n{instruction[:500]}\n\n"
        f"Apply the instruction to the draft. Keep everything the instruction does not change.\n"
        f'Return STRICT JSON: {{"body": "string"}}'
    )


def answer_system() -> str:
    """System prompt for grounded answers."""
    return (
        "You answer members' questions by text message using ONLY the evidence provided. "
        "If the evidence does not contain the answer, set found to false. "
        "You always return valid JSON and nothing else."
    )


def answer_prompt(question: str, evidence_block: str) -> str:
    return (
        f"Question: {question[:500]}\n\n"
        f"Evidence:\n{evidence_block}\n\n"
        f"Answer in 1-2 short sentences suitable for SMS (under 320 characters).\n"
        f'Return STRICT JSON: {{"found": true|false, "answer": "string"}}'
    )


def format_evidence_block(texts: list[str], max_chars: int = 600) -> str:
    """Number evidence snippets for the answer prompt."""
    lines = []
    for i, text in enumerate(texts, 1):
        snippet = text[:max_chars]
        lines.append(f"[{i}] {snippet}")
    return "\n\n".join(lines)
