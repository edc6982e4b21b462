"""
Language detection by Unicode script ranges.

Used to tell the model which language to answer in. Presence of a non-Latin
script wins over Latin text, so a question that mixes English product names
with Arabic is treated as Arabic.
"""

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class LanguageInfo:
    """Detected language information"""
    code: str           # ISO 639-1: "en", "ar", "ko"
    name: str           # "English", "Arabic"
    script: str         # "Latin", "Arabic", "Hangul", ...
    confidence: float   # 0.0~1.0

    @property
    def is_english(self) -> bool:
        return self.code == "en"


_SCRIPT_RANGES = [
    (0x0600, 0x06FF, "Arabic", "ar"),    # Arabic
    (0x0750, 0x077F, "Arabic", "ar"),    # Arabic Supplement
    (0xFB50, 0xFDFF, "Arabic", "ar"),    # Arabic Presentation Forms-A
    (0xFE70, 0xFEFF, "Arabic", "ar"),    # Arabic Presentation Forms-B
    (0x0590, 0x05FF, "Hebrew", "he"),
    (0x0400, 0x04FF, "Cyrillic", "ru"),
    (0x0900, 0x097F, "Devanagari", "hi"),
    (0xAC00, 0xD7AF, "Hangul", "ko"),
    (0x3040, 0x30FF, "Kana", "ja"),
    (0x4E00, 0x9FFF, "CJK", "zh"),
]

LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "ar": "Arabic",
    "he": "Hebrew",
    "ru": "Russian",
    "hi": "Hindi",
    "ko": "Korean",
    "ja": "Japanese",
    "zh": "Chinese",
}

ENGLISH = LanguageInfo(code="en", name="English", script="Latin", confidence=1.0)


def detect_language(text: str) -> LanguageInfo:
    """Detect the presumed language of ``text``; defaults to English."""
    counts: Dict[tuple, int] = {}
    letters = 0
    for ch in text:
        if not ch.isalpha():
            continue
        letters += 1
        cp = ord(ch)
        for start, end, script, lang in _SCRIPT_RANGES:
            if start <= cp <= end:
                counts[(script, lang)] = counts.get((script, lang), 0) + 1
                break

    if not counts:
        return ENGLISH

    (script, lang), hits = max(counts.items(), key=lambda item: item[1])
    return LanguageInfo(
        code=lang,
        name=LANGUAGE_NAMES[lang],
        script=script,
        confidence=round(hits / letters, 2) if letters else 0.0,
    )


def is_arabic(text: str) -> bool:
    return detect_language(text).code == "ar"


def language_instruction(text: str) -> str:
    """Prompt line asking the model to reply in the question's language."""
    info = detect_language(text)
    return f"IMPORTANT: The user asked in {info.name}. Respond in {info.name} only."
