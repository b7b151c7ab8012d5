"""Build system + user prompts for e-mail drafts from flow/tone/length."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FLOWS = ("reply", "compose", "rewrite", "grammar")
TONES = ("neutral", "friendly", "formal", "concise", "enthusiastic", "apologetic")
LENGTHS = ("short", "medium", "long")

_TONE_LINES = {
    "friendly": "Tone: friendly, warm, and professional.",
    "formal": "Tone: formal, clear, and succinct.",
    "concise": "Tone: concise and to-the-point.",
    "enthusiastic": "Tone: positive and energetic, but still professional.",
    "apologetic": "Tone: empathetic and apologetic without overpromising.",
}

_LENGTH_LINES = {
    "short": "Length: brief (3-6 sentences).",
    "long": "Length: detailed (8-14 sentences), but avoid redundancy.",
}


@dataclass(frozen=True)
class DraftArgs:
    flow: str
    tone: str
    length: str
    subject: str | None = None
    context: str | None = None
    instructions: str | None = None


def _norm(v: Any) -> str | None:
    return v.strip().lower() if isinstance(v, str) and v.strip() else None


def _text(v: Any) -> str | None:
    return v.strip() if isinstance(v, str) and v.strip() else None


def to_structured(body: dict[str, Any]) -> DraftArgs | None:
    """Return :class:`DraftArgs` if flow, tone and length are all valid, else None."""
    flow, tone, length = _norm(body.get("flow")), _norm(body.get("tone")), _norm(body.get("length"))
    if flow not in FLOWS or tone not in TONES or length not in LENGTHS:
        return None
    return DraftArgs(
        flow=flow,
        tone=tone,
        length=length,
        subject=_text(body.get("subject")),
        context=_text(body.get("context")),
        instructions=_text(body.get("instructions")),
    )


def build_email_prompts(a: DraftArgs) -> tuple[str, str]:
    """Return ``(system, user)`` prompts for *a*."""
    system = " ".join([
        "You are a concise business email assistant.",
        "Write clear, polite, and action-oriented emails.",
        "Avoid hallucinating details. If context is ambiguous, use neutral phrasing.",
        'Never include placeholders like "[NAME]" unless present in the input.',
        _TONE_LINES.get(a.tone, "Tone: neutral, straightforward, and professional."),
        _LENGTH_LINES.get(a.length, "Length: medium (5-8 sentences)."),
    ])

    if a.flow == "reply":
        lines = [
            "Task: Draft a reply to the email thread below.",
            f"Subject: {a.subject}" if a.subject else None,
            f"Additional guidance: {a.instructions}" if a.instructions else None,
            "--- Thread start ---",
            a.context or "(no prior email provided)",
            "--- Thread end ---",
        ]
    elif a.flow == "compose":
        lines = [
            "Task: Compose a new email.",
            f"Subject: {a.subject}" if a.subject else None,
            f"What this email should cover: {a.instructions}" if a.instructions else None,
            f"\nReference notes:\n{a.context}" if a.context else None,
        ]
    else:
        # rewrite and grammar share the same template
        lines = [
            "Task: Rewrite the email below to match the requested tone and length.",
            f"Keep subject (if relevant): {a.subject}" if a.subject else None,
            f"Rewrite guidance: {a.instructions}" if a.instructions else None,
            "--- Original start ---",
            a.context or "(no original text provided)",
            "--- Original end ---",
        ]

    user = "\n".join(line for line in lines if line)
    return system, user


def compose_prompts(body: dict[str, Any], system_prelude: str | None = None) -> tuple[str | None, str | None]:
    """Return ``(system_override, user_content)`` for a /api/stream body.

    Structured fields win over the legacy ``prompt`` string. Either element may
    be None; a None user content means the request is missing required fields.
    """
    args = to_structured(body)
    if args is not None:
        system, user = build_email_prompts(args)
        if system_prelude:
            system = f"{system_prelude}\n\n{system}"
        return system, user

    prompt = body.get("prompt")
    if isinstance(prompt, str) and prompt.strip():
        return None, prompt
    return None, None
