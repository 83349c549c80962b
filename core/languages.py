"""Practice languages offered in the selector."""
from dataclasses import dataclass
from typing import Any, Dict, List


class UnknownLanguageError(LookupError):
    pass


@dataclass(frozen=True)
class LanguageOption:
    code: str
    name: str
    emoji: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "name": self.name, "emoji": self.emoji}


LANGUAGES: List[LanguageOption] = [
    LanguageOption("en-US", "English", "\U0001F1EC\U0001F1E7"),
    LanguageOption("zh-CN", "Mandarin Chinese", "\U0001F1E8\U0001F1F3"),
    LanguageOption("hi-IN", "Hindi", "\U0001F1EE\U0001F1F3"),
    LanguageOption("es-ES", "Spanish", "\U0001F1EA\U0001F1F8"),
    LanguageOption("fr-FR", "French", "\U0001F1EB\U0001F1F7"),
    LanguageOption("ar-SA", "Arabic", "\U0001F1F8\U0001F1E6"),
    LanguageOption("bn-BD", "Bengali", "\U0001F1E7\U0001F1E9"),
    LanguageOption("ru-RU", "Russian", "\U0001F1F7\U0001F1FA"),
    LanguageOption("pt-PT", "Portuguese", "\U0001F1F5\U0001F1F9"),
    LanguageOption("ur-PK", "Urdu", "\U0001F1F5\U0001F1F0"),
    LanguageOption("id-ID", "Indonesian", "\U0001F1EE\U0001F1E9"),
    LanguageOption("de-DE", "German", "\U0001F1E9\U0001F1EA"),
    LanguageOption("ja-JP", "Japanese", "\U0001F1EF\U0001F1F5"),
    LanguageOption("sw-KE", "Swahili", "\U0001F1F0\U0001F1EA"),
    LanguageOption("mr-IN", "Marathi", "\U0001F1EE\U0001F1F3"),
    LanguageOption("te-IN", "Telugu", "\U0001F1EE\U0001F1F3"),
    LanguageOption("tr-TR", "Turkish", "\U0001F1F9\U0001F1F7"),
    LanguageOption("ta-IN", "Tamil", "\U0001F1EE\U0001F1F3"),
    LanguageOption("yue-Hant-HK", "Cantonese", "\U0001F1ED\U0001F1F0"),
    LanguageOption("vi-VN", "Vietnamese", "\U0001F1FB\U0001F1F3"),
]

DEFAULT_LANGUAGE = LANGUAGES[0]


def find_language(name_or_code: Any) -> LanguageOption:
    """Look up by display name or BCP-47 code (case-insensitive)."""
    if not isinstance(name_or_code, str):
        raise UnknownLanguageError(f"Unsupported practice language: {name_or_code!r}")
    key = name_or_code.strip().lower()
    for option in LANGUAGES:
        if key in (option.name.lower(), option.code.lower()):
            return option
    raise UnknownLanguageError(f"Unsupported practice language: {name_or_code!r}")
