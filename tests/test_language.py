"""Tests for script-based language detection."""

from bizrag.services.language import detect_language, is_arabic, language_instruction


class TestDetectLanguage:
    def test_english_default(self):
        info = detect_language("Show overdue invoices")

        assert info.is_english
        assert info.script == "Latin"

    def test_arabic(self):
        info = detect_language("ما هي الفواتير المتأخرة؟")

        assert info.code == "ar"
        assert info.confidence == 1.0
        assert is_arabic("ما هي الفواتير المتأخرة؟")

    def test_non_latin_script_wins_over_product_names(self):
        assert detect_language("كم مخزون iPhone").code == "ar"

    def test_empty_text(self):
        assert detect_language("").is_english

    def test_instruction(self):
        assert language_instruction("Привет") == "IMPORTANT: The user asked in Russian. Respond in Russian only."
