from __future__ import annotations

from .languages import DEFAULT_LANGUAGE


APOLOGY_TEXT = "I'm sorry, I had trouble processing that. Please try again."
VOICE_INPUT_LABEL = "Voice input"

_TEMPLATES: dict[str, dict[str, str]] = {
    "en": {
        "greeting": (
            "Hello {name}! I'm HealBuddy, your AI health assistant. "
            "Describe your symptoms by typing, speaking, or sharing a photo."
        ),
        "chat_cleared": "Chat cleared. How can I help you today?",
        "assessment": "Here is my assessment, {name}. Please review the details below.",
        "severe_warning": (
            "{name}, your symptoms may be serious. Please seek immediate medical attention "
            "or connect with a doctor now."
        ),
    },
    "hi": {
        "greeting": (
            "नमस्ते {name}! मैं HealBuddy हूँ, आपका AI स्वास्थ्य सहायक। "
            "अपने लक्षण लिखकर, बोलकर या फोटो साझा करके बताएं।"
        ),
        "chat_cleared": "चैट साफ़ हो गई। आज मैं आपकी कैसे मदद कर सकता हूँ?",
        "assessment": "{name}, यह मेरा आकलन है। कृपया नीचे दिए गए विवरण देखें।",
        "severe_warning": (
            "{name}, आपके लक्षण गंभीर हो सकते हैं। कृपया तुरंत चिकित्सा सहायता लें "
            "या अभी डॉक्टर से संपर्क करें।"
        ),
    },
}


def message_template(key: str, language_code: str | None) -> str:
    table = _TEMPLATES.get(language_code or DEFAULT_LANGUAGE, _TEMPLATES[DEFAULT_LANGUAGE])
    return table.get(key) or _TEMPLATES[DEFAULT_LANGUAGE][key]


def render_message(key: str, language_code: str | None, *, name: str = "") -> str:
    return message_template(key, language_code).replace("{name}", name)


def assistant_reply_text(emergency_contact: bool, language_code: str | None, name: str) -> str:
    """Template choice depends on the emergency flag alone."""
    key = "severe_warning" if emergency_contact else "assessment"
    return render_message(key, language_code, name=name)
