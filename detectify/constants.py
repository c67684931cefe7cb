"""Shared constants for Detectify."""

from __future__ import annotations

# Fetch identities rotated across retries.
USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.6099.43 Mobile Safari/537.36",
)

ACCEPT_HEADERS: tuple[str, ...] = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "text/html,application/xhtml+xml;q=0.9,*/*;q=0.7",
)

ACCEPT_LANGUAGE = "en-US,en;q=0.9"

# Labels that only say "some chat widget is here".
GENERIC_LABELS: frozenset[str] = frozenset({"Website Chatbot", "ChatBot", "Custom Chat"})
DEFAULT_GENERIC_LABEL = "Website Chatbot"

# Label rewrites applied before results leave the pipeline.
LABEL_ALIASES: dict[str, str] = {
    "Custom Chat": "Website Chatbot",
}

# Sites that repeatedly produced false positives. Matched against the host.
DEFAULT_FALSE_POSITIVE_DOMAINS: tuple[str, ...] = (
    "kentdentists.com",
    "privategphealthcare.com",
    "dentalcaredirect.co.uk",
    "mydentist.co.uk",
    "dentist-special.com",
)

# Keywords used by the heuristic fallback pass (URL and page title).
FALLBACK_KEYWORDS: tuple[str, ...] = (
    "chat",
    "support",
    "help",
    "contact",
    "message",
    "livechat",
    "live-chat",
)

# Status strings persisted with results.
STATUS_PROCESSING = "processing"
STATUS_PENDING = "pending"
STATUS_CHATBOT_DETECTED = "Chatbot detected"
STATUS_NO_CHATBOT = "No chatbot detected"
STATUS_NO_CHATBOT_VERIFIED = "No chatbot detected (verified)"
STATUS_KEYWORD_MATCH = "Chatbot detected (keyword match)"
STATUS_DOMAIN_HEURISTIC = "Chatbot detected (domain heuristic)"
STATUS_EMPTY_URL = "Error: Empty URL"
STATUS_INVALID_URL = "Error: Invalid URL"
