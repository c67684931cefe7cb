"""Pattern libraries for chatbot detection.

Signatures are plain data: a label (vendor name or signal category), a
regular expression, the kind of evidence it represents, and the tier that
enables it. The matcher decides which tiers run for a given stage.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Iterable, Optional

from ..constants import DEFAULT_FALSE_POSITIVE_DOMAINS, GENERIC_LABELS
from ..utils.domains import is_false_positive_domain


class PatternType(str, Enum):
    """Kind of evidence a signature represents."""

    SCRIPT_REFERENCE = "script-reference"
    DOM_ELEMENT = "dom-element"
    META_TAG = "meta-tag"
    WEBSOCKET = "websocket"
    DYNAMIC_LOAD = "dynamic-load"
    FALSE_POSITIVE = "false-positive"


class PatternTier(str, Enum):
    """Which detection pass enables a signature."""

    BASIC = "basic"
    ADVANCED = "advanced"
    FUNCTIONAL = "functional"
    HIDDEN = "hidden"


# Generic signal categories (labels that are not vendors).
CATEGORY_DYNAMIC = "dynamic"
CATEGORY_ELEMENTS = "elements"
CATEGORY_META = "meta"
CATEGORY_WEBSOCKET = "websocket"
CATEGORY_INITIALIZATION = "initialization"
CATEGORY_CONFIGURATION = "configuration"
CATEGORY_INTERACTIVE = "interactive"
CATEGORY_FUNCTIONAL = "functional"
CATEGORY_HIDDEN = "hidden"
CATEGORY_FALSE_POSITIVE = "false-positive"

SIGNAL_CATEGORIES: frozenset[str] = frozenset(
    {
        CATEGORY_DYNAMIC,
        CATEGORY_ELEMENTS,
        CATEGORY_META,
        CATEGORY_WEBSOCKET,
        CATEGORY_INITIALIZATION,
        CATEGORY_CONFIGURATION,
        CATEGORY_INTERACTIVE,
        CATEGORY_FUNCTIONAL,
        CATEGORY_HIDDEN,
        CATEGORY_FALSE_POSITIVE,
    }
)


@dataclass(frozen=True)
class PatternSignature:
    """A single (label, pattern, type) detection signature."""

    label: str
    pattern: str
    type: PatternType
    tier: PatternTier = PatternTier.BASIC
    case_sensitive: bool = False

    @cached_property
    def regex(self) -> re.Pattern:
        flags = 0 if self.case_sensitive else re.IGNORECASE
        return re.compile(self.pattern, flags)

    @property
    def is_vendor(self) -> bool:
        return self.label not in SIGNAL_CATEGORIES

    def search(self, text: str) -> Optional[str]:
        """Return the matched text, or None."""
        match = self.regex.search(text)
        return match.group(0) if match else None


# Basic vendor library: script URLs and widget markup tokens.
VENDOR_PATTERNS: dict[str, list[str]] = {
    "Intercom": [
        r"intercom",
        r"intercomcdn",
        r"intercom-frame",
        r"intercom-container",
        r"intercom\.com/messenger",
    ],
    "Drift": [
        r"drift",
        r"driftt",
        r"js\.driftt\.com",
        r"drift-frame",
        r"driftt\.com",
    ],
    "Zendesk Chat": [
        r"zopim",
        r"zendesk",
        r"zdassets",
        r"zd-chat",
        r"zdchat",
        r"static\.zdassets\.com",
        r"ekr\.zdassets\.com",
    ],
    "Crisp": [
        r"crisp",
        r"crisp-client",
        r"client\.crisp\.chat",
        r"crisp-widget",
    ],
    "LiveChat": [
        r"livechat",
        r"livechatinc",
        r"cdn\.livechatinc\.com",
        r"livechat-widget",
    ],
    "Tawk.to": [
        r"tawk",
        r"tawk\.to",
        r"embed\.tawk\.to",
        r"tawk-widget",
    ],
    "HubSpot Chat": [
        r"hubspot",
        r"js\.hs-scripts\.com",
        r"js\.hsforms\.net",
        r"js\.usemessages\.com",
        r"hubspot-messages-iframe",
    ],
    "Tidio": [
        r"tidio",
        r"tidiochat",
        r"code\.tidio\.co",
        r"tidio-chat",
    ],
    "LivePerson": [
        r"liveperson",
        r"lpcdn",
        r"lptag",
        r"liveperson\.net",
    ],
    "Olark": [
        r"olark",
        r"olark-frame",
        r"static\.olark\.com",
    ],
    "Freshchat": [
        r"freshchat",
        r"wchat\.freshchat\.com",
        r"freshbots",
        r"freshworks",
    ],
    "ManyChat": [
        r"manychat",
        r"mc\.manychat\.com",
    ],
    "Chaport": [
        r"chaport",
        r"chaport-container",
        r"app\.chaport\.com",
    ],
    "Jivochat": [
        r"jivo",
        r"jivosite",
        r"jivo_container",
        r"cdn\.jivochat\.com",
        r"jivosite\.com",
    ],
    "Facebook Messenger Chat": [
        r"fb-messenger",
        r"facebook\.com/plugins/customerchat",
        r"messenger-plugin",
        r"fb-customerchat",
        r"\.facebook\.com/v[\d.]+/plugins/customerchat",
    ],
    "WhatsApp": [
        r"wa\.me/",
        r"api\.whatsapp\.com",
        r"whatsapp-(?:widget|button|chat)",
    ],
    "Gist": [
        r"getgist\.com",
        r"gist\.build",
    ],
    "Go High Level": [
        r"ghl-widget",
        r"gohighlevel\.com",
        r"leadconnectorhq\.com",
    ],
    "ChatBot": [
        r"chatbotui",
        r"chatbot-container",
        r"cdn\.chatbot\.com",
    ],
    "Custom Chat": [
        r"chat-box",
        r"messenger-widget",
    ],
    "Website Chatbot": [
        r"chat-window",
        r"chatwidget",
        r"chat-?bot",
        r"chat-container",
        r"chat-bubble",
        r"bot-avatar",
        r"support-?chat",
        r"live-chat",
        r"chat-?support",
        r"chat-?widget",
    ],
}

# Provider signatures: scripts, DOM ids/classes and JS globals.
PROVIDER_SIGNATURES: dict[str, dict[str, list[str]]] = {
    "Intercom": {
        "scripts": ["widget.intercom.io", "api.intercom.io", "intercom-cdn", "js.intercomcdn.com"],
        "dom": ["intercom-lightweight-app", "intercom-container", "intercom-launcher"],
        "globals": ["Intercom", "intercomSettings"],
    },
    "Drift": {
        "scripts": ["js.driftt.com", "driftt.com/include", "drift.js"],
        "dom": ["drift-widget-container", "drift-frame-controller", "drift-widget"],
        "globals": ["driftt", "drift.load"],
    },
    "Zendesk Chat": {
        "scripts": ["static.zdassets.com", "ekr.zdassets.com", "v2.zopim.com"],
        "dom": ["zEWidget-launcher", "webWidget", "launcher-frame"],
        "globals": ["zESettings", "$zopim", "zE("],
    },
    "Crisp": {
        "scripts": ["client.crisp.chat"],
        "dom": ["crisp-client", "crisp-chatbox", "crisp-button"],
        "globals": ["$crisp", "CRISP_WEBSITE_ID", "CRISP_TOKEN_ID"],
    },
    "LiveChat": {
        "scripts": ["cdn.livechatinc.com", "livechatinc.com/tracking.js"],
        "dom": ["chat-widget-container", "data-lc-event", "livechat-compact-container"],
        "globals": ["LiveChatWidget", "LC_API", "__lc.license"],
    },
    "Tawk.to": {
        "scripts": ["embed.tawk.to"],
        "dom": ["tawkchat-container", "tawkchat-minified"],
        "globals": ["Tawk_API", "Tawk_LoadStart"],
    },
    "HubSpot Chat": {
        "scripts": ["js.hs-scripts.com", "js.usemessages.com", "js.hubspotfeedback.com"],
        "dom": ["hubspot-messages-iframe-container", "chat-widget-iframe"],
        "globals": ["HubSpotConversations", "hsConversationsSettings"],
    },
    "Freshchat": {
        "scripts": ["wchat.freshchat.com", "freshchat.js"],
        "dom": ["freshchat-container", "fc_frame", "fc_widget"],
        "globals": ["fcWidget", "freshchat_agent"],
    },
    "Olark": {
        "scripts": ["static.olark.com", "olark.identify"],
        "dom": ["olark-box-container", "habla_window_div"],
        "globals": ["olarkIdentify", "olark("],
    },
    "LivePerson": {
        "scripts": ["lptag.liveperson.net", "lpcdn.lpsnmedia.net"],
        "dom": ["lpChat", "lpChatWidget", "lp-chat-"],
        "globals": ["lpTag", "lpMTagConfig", "lpProtocol"],
    },
    "Tidio": {
        "scripts": ["code.tidio.co"],
        "dom": ["tidio-chat", "tidio-chat-iframe"],
        "globals": ["tidioChatApi", "tidioIdentify", "tidioChatCode"],
    },
    "Facebook Messenger Chat": {
        "scripts": ["connect.facebook.net/en_US/sdk/xfbml.customerchat.js", "facebook.com/plugins/customerchat"],
        "dom": ["fb-customerchat", "fb_customer_chat", "fb_dialog"],
        "globals": ["fbAsyncInit"],
    },
    "Chaport": {
        "scripts": ["app.chaport.com"],
        "dom": ["chaport-container", "chaport-window", "chaport-widget"],
        "globals": ["chaportConfig", "window.chaport"],
    },
    "Jivochat": {
        "scripts": ["code.jivosite.com", "code.jivo.ru", "jivo.js"],
        "dom": ["jivo-iframe-container", "jcont"],
        "globals": ["jivo_api", "jivo_config", "jivo_init"],
    },
    "Help Scout": {
        "scripts": ["beacon-v2.helpscout.net", "helpscout.net"],
        "dom": ["beacon-container", "BeaconFabButtonFrame"],
        "globals": ["BeaconInit", "Beacon('init'"],
    },
    "Go High Level": {
        "scripts": ["widgets.leadconnectorhq.com", "gohighlevel.com", "highlevel.com"],
        "dom": ["ghl-widget", "chat-widget-ghl"],
        "globals": ["conversation-ai", "leadConnector"],
    },
}

DYNAMIC_PATTERNS: list[str] = [
    r"window\.(?:onload|addEventListener).{0,80}chat",
    r"document\.(?:ready|addEventListener).{0,80}chat",
    r"(?:loadChat|initChat|startChat|chatInit|initializeChat)",
    r"chatbot.{0,40}init",
    r"init.{0,40}chatbot",
    r"messaging.{0,40}init",
    r"livechat.{0,40}(?:init|load)",
    r"chatbox.{0,40}init",
    r"widget.{0,20}load",
    r"load.{0,20}widget",
]

ELEMENT_PATTERNS: list[str] = [
    r"<div[^>]*(?:class|id)=[\"'][^\"']*(?:chat|messenger|livechat)[^\"']*[\"']",
    r"<iframe[^>]*(?:title|name|id)=[\"'][^\"']*chat[^\"']*[\"']",
    r"<button[^>]*(?:class|id)=[\"'][^\"']*chat[^\"']*[\"']",
    r"<(?:div|section)[^>]*class=[\"'][^\"']*support-widget[^\"']*[\"']",
]

META_PATTERNS: list[str] = [
    r"<meta[^>]*(?:chat|messenger|support|bot|widget)[^>]*>",
    r"(?:chat|messenger|bot|widget|engage)[\w-]{0,20}(?:config|settings)",
    r"(?:config|settings)[\w-]{0,20}(?:chat|messenger|bot|widget|engage)",
    r"(?:chat|messenger|widget).{0,40}configuration",
]

WEBSOCKET_PATTERNS: list[str] = [
    r"(?:new WebSocket|WebSocket\.).{0,80}(?:chat|messenger|widget|engage)",
    r"wss?://[^\"']*(?:chat|messenger|widget|engage|support)[^\"']*",
    r"socket\.io.{0,80}chat",
    r"chat.{0,80}socket\.io",
    r"(?:socket|websocket).{0,40}chatbot",
]

INITIALIZATION_PATTERNS: list[str] = [
    r"(?:loadChat|initChat|startChat|chatInit|initializeChat)\s*\(",
    r"Intercom\(\s*[\"']boot[\"']",
    r"drift\.load\(\s*[\"'][\w-]+[\"']",
    r"Tawk_API\s*=",
    r"window\.\$crisp\s*=",
    r"zE\(\s*[\"'](?:webWidget|messenger)",
    r"fcWidget\.init\(",
    r"HubSpotConversations\.widget\.load\(",
    r"LiveChatWidget\.init\(",
    r"Beacon\(\s*[\"']init[\"']",
]

CONFIGURATION_PATTERNS: list[str] = [
    r"window\.intercomSettings\s*=",
    r"CRISP_WEBSITE_ID\s*=",
    r"hsConversationsSettings\s*=",
    r"zESettings\s*=",
    r"__lc\.license\s*=",
    r"tidioChatCode",
    r"jivo_config\s*=",
    r"window\.\w*(?:[Cc]hat|[Bb]ot)\w*(?:Config|Settings)\s*=",
    r"(?:chat|bot|widget)[_-]?(?:config|settings)\s*[=:]\s*\{",
]

INTERACTIVE_PATTERNS: list[str] = [
    r"<(?:div|button|a)[^>]*aria-label=[\"'][^\"']*chat[^\"']*[\"']",
    r"<iframe[^>]*title=[\"'][^\"']*(?:chat|messag)[^\"']*[\"']",
    r"<[^>]*role=[\"']dialog[\"'][^>]*aria-labelledby=[\"'][^\"']*chat",
    r"<[^>]*data-(?:chat|widget)-(?:open|toggle|launcher)",
]

FUNCTIONAL_PATTERNS: list[str] = [
    r"<(?:input|textarea)[^>]*(?:placeholder|aria-label|name)=[\"'][^\"']*(?:type (?:a|your) message|write a message|message)[^\"']*[\"']",
    r"<button[^>]*(?:class|id|aria-label)=[\"'][^\"']*(?:send|submit)[-_ ]?(?:message|msg|chat)?[^\"']*[\"']",
    r"class=[\"'][^\"']*(?:message-bubble|chat-message|msg-bubble|chat-bubble-message)[^\"']*[\"']",
    r"role=[\"']log[\"'][^>]*aria-live=[\"']polite[\"']",
    r"--intercom-color",
]

HIDDEN_PATTERNS: list[str] = [
    r"<[^>]*(?:class|id)=[\"'][^\"']*chat[^\"']*[\"'][^>]*style=[\"'][^\"']*(?:display:\s*none|visibility:\s*hidden)",
    r"<[^>]*style=[\"'][^\"']*(?:display:\s*none|visibility:\s*hidden)[^\"']*[\"'][^>]*(?:class|id)=[\"'][^\"']*chat",
    r"<template[^>]*(?:chat|messenger)",
    r"data-chat-(?:lazy|deferred)",
]

# Contact forms and mail links that look like chat but are not.
FALSE_POSITIVE_CONTENT_PATTERNS: list[str] = [
    r"<form[^>]*action=[\"'][^\"']*contact",
    r"class=[\"'][^\"']*contact-form",
    r"wpcf7",
    r"gform_wrapper",
    r"name=[\"']your-message[\"']",
    r"class=[\"'][^\"']*newsletter-(?:signup|form)",
    r"href=[\"']mailto:",
]


def _literal(token: str) -> str:
    return re.escape(token)


def _global(token: str) -> str:
    escaped = re.escape(token)
    if token[:1].isalnum() or token[:1] == "_":
        escaped = r"\b" + escaped
    return escaped


def build_default_signatures() -> tuple[PatternSignature, ...]:
    """Assemble the built-in signature set in a stable order."""
    signatures: list[PatternSignature] = []

    for vendor, patterns in VENDOR_PATTERNS.items():
        for pattern in patterns:
            signatures.append(PatternSignature(vendor, pattern, PatternType.SCRIPT_REFERENCE))

    for vendor, parts in PROVIDER_SIGNATURES.items():
        for token in parts.get("scripts", []):
            signatures.append(
                PatternSignature(vendor, _literal(token), PatternType.SCRIPT_REFERENCE, PatternTier.ADVANCED)
            )
        for token in parts.get("dom", []):
            signatures.append(
                PatternSignature(vendor, _literal(token), PatternType.DOM_ELEMENT, PatternTier.ADVANCED)
            )
        for token in parts.get("globals", []):
            signatures.append(
                PatternSignature(
                    vendor,
                    _global(token),
                    PatternType.SCRIPT_REFERENCE,
                    PatternTier.ADVANCED,
                    case_sensitive=True,
                )
            )

    categories: list[tuple[str, list[str], PatternType, PatternTier]] = [
        (CATEGORY_DYNAMIC, DYNAMIC_PATTERNS, PatternType.DYNAMIC_LOAD, PatternTier.BASIC),
        (CATEGORY_ELEMENTS, ELEMENT_PATTERNS, PatternType.DOM_ELEMENT, PatternTier.BASIC),
        (CATEGORY_META, META_PATTERNS, PatternType.META_TAG, PatternTier.BASIC),
        (CATEGORY_WEBSOCKET, WEBSOCKET_PATTERNS, PatternType.WEBSOCKET, PatternTier.BASIC),
        (CATEGORY_INITIALIZATION, INITIALIZATION_PATTERNS, PatternType.DYNAMIC_LOAD, PatternTier.BASIC),
        (CATEGORY_CONFIGURATION, CONFIGURATION_PATTERNS, PatternType.META_TAG, PatternTier.BASIC),
        (CATEGORY_INTERACTIVE, INTERACTIVE_PATTERNS, PatternType.DOM_ELEMENT, PatternTier.BASIC),
        (CATEGORY_FUNCTIONAL, FUNCTIONAL_PATTERNS, PatternType.DOM_ELEMENT, PatternTier.FUNCTIONAL),
        (CATEGORY_HIDDEN, HIDDEN_PATTERNS, PatternType.DOM_ELEMENT, PatternTier.HIDDEN),
        (
            CATEGORY_FALSE_POSITIVE,
            FALSE_POSITIVE_CONTENT_PATTERNS,
            PatternType.FALSE_POSITIVE,
            PatternTier.BASIC,
        ),
    ]
    for label, patterns, pattern_type, tier in categories:
        for pattern in patterns:
            signatures.append(PatternSignature(label, pattern, pattern_type, tier))

    return tuple(signatures)


@dataclass
class PatternLibrary:
    """An immutable-by-convention snapshot of every pattern set in use."""

    signatures: tuple[PatternSignature, ...] = field(default_factory=build_default_signatures)
    false_positive_domains: tuple[str, ...] = DEFAULT_FALSE_POSITIVE_DOMAINS
    generic_labels: frozenset[str] = GENERIC_LABELS
    generic_min_hits: int = 2
    generic_min_hits_suppressed: int = 3
    false_positive_content_threshold: int = 2
    version: str = "builtin"

    def for_tiers(self, tiers: Iterable[PatternTier]) -> list[PatternSignature]:
        """Signatures enabled for the given tiers, in library order."""
        enabled = set(tiers)
        return [sig for sig in self.signatures if sig.tier in enabled]

    @property
    def vendors(self) -> list[str]:
        seen: dict[str, None] = {}
        for sig in self.signatures:
            if sig.is_vendor:
                seen.setdefault(sig.label, None)
        return list(seen)

    def is_generic(self, label: str) -> bool:
        return label in self.generic_labels

    def is_false_positive_domain(self, url: str) -> bool:
        return is_false_positive_domain(url, self.false_positive_domains)
