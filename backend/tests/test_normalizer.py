import pytest

from docstruct.core.config import settings
from docstruct.services.normalizer import normalize_text


def test_normalize_none_yields_empty_result():
    result = normalize_text(None)
    assert result.text == ""
    assert result.char_count == 0


def test_normalize_whitespace_only_input_is_total():
    result = normalize_text("   \n\t ")
    assert result.text == " \n\t "
    assert result.char_count == len(result.text)


def test_line_endings_collapse_to_newline():
    result = normalize_text("a\r\nb\rc\u2028d\u2029e")
    assert result.text == "a\nb\nc\nd\ne"


def test_dehyphenation_joins_words_across_line_breaks():
    assert normalize_text("won-\nderful").text == "wonderful"
    assert normalize_text("end-  \n\n  Start").text == "endStart"


def test_dehyphenation_can_be_disabled():
    assert normalize_text("won-\nderful", dehyphenate=False).text == "won-\nderful"


def test_dehyphenation_requires_letters_on_both_sides():
    assert normalize_text("test-123\nvalue").text == "test-123\nvalue"
    assert normalize_text("2020-\n2021").text == "2020-\n2021"


def test_dehyphenation_flag_defaults_from_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "normalization_dehyphenate", False)
    assert normalize_text("won-\nderful").text == "won-\nderful"


def test_collapse_spaces_only_touches_literal_spaces():
    assert normalize_text("a    b\t\tc\n\nd").text == "a b\t\tc\n\nd"
    assert normalize_text("a    b", collapse_spaces=False).text == "a    b"


def test_unicode_composition_and_zero_width_removal():
    result = normalize_text("e\u0301t\u200be\ufeff")
    assert result.text == "\u00e9te"
    assert result.char_count == 3


def test_smart_quotes_and_dashes_are_replaced():
    text = "\u201cHi\u201d \u201eLo\u201d \u2018a\u2019 \u201ab\u2019 1\u20132 x\u2014y"
    assert normalize_text(text).text == "\"Hi\" \"Lo\" 'a' 'b' 1-2 x-y"


def test_minus_sign_is_preserved():
    assert normalize_text("-5\u2013+10").text == "-5-+10"


@pytest.mark.parametrize(
    "raw",
    [
        "Plain text.",
        "won-\nderful and  spaced\r\nlines",
        "a \u200b b",
        "hyphen\u2013\nated",
        "Caf\u00e9 r\u00e9sum\u00e9 \u201cquoted\u201d",
        "",
    ],
)
def test_normalization_is_idempotent(raw: str):
    once = normalize_text(raw)
    twice = normalize_text(once.text)
    assert twice.text == once.text
    assert twice.char_count == once.char_count == len(once.text)


def test_char_count_counts_code_points():
    result = normalize_text("\U0001F600 ok")
    assert result.char_count == 4
