from __future__ import annotations

from dataclasses import dataclass


DEFAULT_LANGUAGE = "en"
DEFAULT_LOCALE = "en-US"


@dataclass(frozen=True)
class Language:
    code: str
    name: str
    native_name: str
    locale: str

    def as_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "name": self.name,
            "native_name": self.native_name,
            "locale": self.locale,
        }


SUPPORTED_LANGUAGES: tuple[Language, ...] = (
    Language("en", "English", "English", "en-US"),
    Language("hi", "Hindi", "हिंदी", "hi-IN"),
    Language("bn", "Bengali", "বাংলা", "bn-IN"),
    Language("te", "Telugu", "తెలుగు", "te-IN"),
    Language("ta", "Tamil", "தமிழ்", "ta-IN"),
    Language("mr", "Marathi", "मराठी", "mr-IN"),
    Language("gu", "Gujarati", "ગુજરાતી", "gu-IN"),
    Language("kn", "Kannada", "ಕನ್ನಡ", "kn-IN"),
    Language("ml", "Malayalam", "മലയാളം", "ml-IN"),
    Language("pa", "Punjabi", "ਪੰਜਾਬੀ", "pa-IN"),
    Language("or", "Odia", "ଓଡ଼ିଆ", "or-IN"),
    Language("as", "Assamese", "অসমীয়া", "as-IN"),
)

_BY_CODE = {language.code: language for language in SUPPORTED_LANGUAGES}
SUPPORTED_CODES = frozenset(_BY_CODE)


def get_language(code: str | None) -> Language | None:
    return _BY_CODE.get((code or "").strip().lower())


def locale_for(code: str | None) -> str:
    """Speech/recognition locale for a language code; unmapped codes use ``en-US``."""
    language = get_language(code)
    return language.locale if language else DEFAULT_LOCALE
