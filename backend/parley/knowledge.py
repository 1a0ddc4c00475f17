from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, ValidationError

from parley.config import settings

logger = structlog.get_logger()


class FAQ(BaseModel):
    q: str
    a: str


class KnowledgePack(BaseModel):
    """Static facts about the business the assistant represents."""

    brand: str
    site: str = ""
    services: list[str] = Field(default_factory=list)
    core_stack: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    process: list[str] = Field(default_factory=list)
    faqs: list[FAQ] = Field(default_factory=list)
    tone: str = ""

    def to_context(self) -> str:
        """Render the pack as the flat text block prepended to requests."""
        faqs = "\n".join(f"- Q: {f.q}\n  A: {f.a}" for f in self.faqs)
        lines = [
            f"Brand: {self.brand} ({self.site})",
            f"Services: {', '.join(self.services)}",
            f"Core stack: {', '.join(self.core_stack)}",
            f"Strengths: {', '.join(self.strengths)}",
            f"Process: {' → '.join(self.process)}",
            f"FAQs:\n{faqs}",
            f"Tone: {self.tone}",
        ]
        return "\n".join(lines)


def load_knowledge_pack(path: str | Path | None = None) -> KnowledgePack | None:
    """Read and validate the knowledge pack file.

    Returns:
        The pack, or ``None`` when the file is missing or malformed.
    """
    source = Path(path or settings.KNOWLEDGE_PACK_PATH)
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
        return KnowledgePack.model_validate(data)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
        logger.warning("knowledge_pack_load_failed", path=str(source), error=str(exc))
        return None


def load_knowledge_context(path: str | Path | None = None) -> str:
    """Rendered knowledge text, or an empty string when it cannot be loaded."""
    pack = load_knowledge_pack(path)
    return pack.to_context() if pack else ""


DEFAULT_FAQ_QUESTIONS = (
    "What services does AuraXPro offer?",
    "What is your tech stack?",
    "Do you handle CMS?",
    "Do you do 3D product configurators?",
    "How long does an MVP typically take?",
    "What are your development strengths?",
)


def load_faq_questions(path: str | Path | None = None) -> list[str]:
    """Quick questions offered before the user types anything.

    Taken from the pack's FAQs; the built-in list is used when the pack is
    missing or has none.
    """
    pack = load_knowledge_pack(path)
    if pack is None or not pack.faqs:
        return list(DEFAULT_FAQ_QUESTIONS)
    return [faq.q for faq in pack.faqs]
