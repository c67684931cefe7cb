"""Text-level chatbot heuristics.

These look at what a visitor would read (invitations to chat, typing
indicators) rather than at vendor markup.
"""

from __future__ import annotations

import re

from .detector_models import SmartDetection

HIGH_CONFIDENCE_INDICATORS = [
    re.compile(r"chat-?bot\s*is\s*(?:typing|thinking)", re.I),
    re.compile(r"start\s*(?:a\s*)?live\s*chat", re.I),
    re.compile(r"chat\s*with\s*(?:us|an?\s*expert|an?\s*agent|our\s*team|support)", re.I),
]

CHAT_INVITATION_PATTERNS = [
    re.compile(r"chat\s+with\s+us", re.I),
    re.compile(r"start\s+a\s+chat", re.I),
    re.compile(r"live\s+chat", re.I),
    re.compile(r"chat\s+now", re.I),
    re.compile(r"chat\s+support", re.I),
    re.compile(r"message\s+us", re.I),
    re.compile(r"talk\s+to\s+us", re.I),
]

CHATBOT_KEYWORDS = [
    "assistance",
    "automated",
    "bot",
    "chat",
    "conversation",
    "instant",
    "live",
    "message",
    "response",
    "support",
]

CHAT_ELEMENT_TOKENS = ["chat-window", "chat-container", "chat-widget", "livechat", "bot-container"]

# Keyword density is meaningless on tiny documents.
MIN_TEXT_FOR_DENSITY = 500

_TAG_RE = re.compile(r"<script\b.*?</script>|<style\b.*?</style>|<[^>]+>", re.I | re.S)
_KEYWORD_RE = re.compile(r"\b(?:" + "|".join(CHATBOT_KEYWORDS) + r")\b", re.I)
_HEALTHCARE_RE = re.compile(r"dental|dentist|orthodont", re.I)
_CHAT_CTA_RE = re.compile(r"chat.{0,20}now|start.{0,20}chat|live.{0,5}chat", re.I)


def visible_text(html: str) -> str:
    return re.sub(r"\s+", " ", _TAG_RE.sub(" ", html or "")).strip()


def perform_smart_detection(html: str) -> SmartDetection:
    """Score a page on chat invitations, chat UI tokens and keyword density."""
    if not html:
        return SmartDetection()

    text = visible_text(html)
    lowered = html.lower()

    high_confidence = any(p.search(text) for p in HIGH_CONFIDENCE_INDICATORS)
    invitations = [p.pattern for p in CHAT_INVITATION_PATTERNS if p.search(text)]
    chat_elements = sum(1 for token in CHAT_ELEMENT_TOKENS if token in lowered)

    density = 0.0
    if len(text) >= MIN_TEXT_FOR_DENSITY:
        density = len(_KEYWORD_RE.findall(text)) / (len(text) / 1000)

    is_likely = high_confidence or chat_elements >= 2 or (density > 1.5 and chat_elements >= 1)

    confidence = 0.0
    if high_confidence:
        confidence = 0.9
    elif chat_elements >= 2:
        confidence = 0.8
    elif chat_elements == 1 and density > 1.5:
        confidence = 0.7
    elif density > 2:
        confidence = 0.6
    elif density > 1 or invitations:
        confidence = 0.4

    indicators: list[str] = []
    if high_confidence:
        indicators.append("High confidence patterns")
    if invitations:
        indicators.append(f"{len(invitations)} chat invitations")
    if chat_elements:
        indicators.append(f"{chat_elements} chat UI elements")
    if density > 0.8:
        indicators.append(f"Keyword density: {density:.2f}")

    return SmartDetection(is_likely=is_likely, confidence=confidence, indicators=indicators)


def healthcare_without_chat_cta(html: str) -> bool:
    """Dental/healthcare pages without a chat call-to-action often misfire."""
    text = visible_text(html)
    return bool(_HEALTHCARE_RE.search(text)) and not _CHAT_CTA_RE.search(text)
