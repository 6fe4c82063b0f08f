"""Sanitizer tests."""

import pytest

from chatbot.services.sanitizer import (
    EMPTY_MESSAGE,
    HARMFUL_CONTENT,
    MAX_MESSAGE_LENGTH,
    MESSAGE_TOO_LONG,
    detect_harmful_content,
    sanitize_and_validate,
    sanitize_html,
    validate_message,
)


class TestSanitizeHtml:
    def test_plain_text_unchanged(self):
        assert sanitize_html("What's a good plan for Kyoto?") == "What's a good plan for Kyoto?"

    def test_script_element_removed_with_contents(self):
        assert sanitize_html("Hello <script>alert(1)</script>") == "Hello"

    @pytest.mark.parametrize("tag", ["script", "iframe", "object", "embed", "form"])
    def test_dangerous_elements_removed(self, tag):
        assert sanitize_html(f"a <{tag} x='1'>inner</{tag}> b") == "a b"

    @pytest.mark.parametrize(
        "text, expected",
        [
            ('look <embed src="https://evil.example/x.swf"> here', "look here"),
            ("hi <iframe src=https://evil.example>", "hi"),
            ('<form action="/steal"><input name=pw>', "<input name=pw>"),
            ('<object data="x.swf">', ""),
            ("a <embed src=x.swf /> b", "a b"),
            ("a <IFRAME src=x> b </iframe > c", "a b c"),
            ("trailing <iframe src=x", "trailing"),
        ],
    )
    def test_unclosed_and_void_tags_removed(self, text, expected):
        assert sanitize_html(text) == expected

    def test_form_lookalike_tags_kept(self):
        assert sanitize_html("<formula> x") == "<formula> x"

    def test_element_match_is_case_insensitive(self):
        assert sanitize_html("x <SCRIPT>bad()</SCRIPT> y") == "x y"

    def test_event_handler_attributes_removed(self):
        assert sanitize_html('<img src="a.png" onerror="steal()">') == '<img src="a.png">'
        assert sanitize_html("<b onclick=go>hi</b>") == "<b>hi</b>"

    def test_uri_schemes_removed(self):
        assert sanitize_html("click javascript:run") == "clickrun"
        assert "data:" not in sanitize_html("see data:text/plain,hello")

    def test_words_containing_scheme_names_survive(self):
        assert sanitize_html("the metadata: fields") == "the metadata: fields"

    def test_whitespace_collapsed_and_trimmed(self):
        assert sanitize_html("  hello \n\n  world\t ") == "hello world"

    def test_empty_input(self):
        assert sanitize_html("") == ""


class TestValidation:
    def test_valid_message(self):
        assert validate_message("Help me plan a trip") == (True, None)

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_empty_rejected(self, text):
        assert validate_message(text) == (False, EMPTY_MESSAGE)

    def test_length_boundary(self):
        assert validate_message("a" * MAX_MESSAGE_LENGTH) == (True, None)
        assert validate_message("a" * (MAX_MESSAGE_LENGTH + 1)) == (False, MESSAGE_TOO_LONG)

    @pytest.mark.parametrize(
        "text",
        [
            "<script src=x>",
            "vbscript:msgbox",
            "eval (payload)",
            "read window.location",
            "localStorage.getItem('t')",
            "sessionStorage.clear()",
            "data:text/html;base64,xyz",
            "onload = start",
        ],
    )
    def test_harmful_patterns_detected(self, text):
        assert detect_harmful_content(text)

    def test_harmless_text_not_flagged(self):
        assert not detect_harmful_content("Going online tomorrow, once I evaluate the options")


class TestSanitizeAndValidate:
    def test_returns_sanitized_text(self):
        result = sanitize_and_validate("  Help me plan a trip to Kyoto  ")
        assert result.is_valid
        assert result.sanitized == "Help me plan a trip to Kyoto"
        assert result.error is None

    def test_only_markup_is_empty(self):
        result = sanitize_and_validate("<script>alert(1)</script>")
        assert not result.is_valid
        assert result.error == EMPTY_MESSAGE

    def test_harmful_after_sanitizing(self):
        result = sanitize_and_validate("print document.cookie please")
        assert not result.is_valid
        assert result.error == HARMFUL_CONTENT

    def test_none_treated_as_empty(self):
        result = sanitize_and_validate(None)
        assert not result.is_valid
        assert result.error == EMPTY_MESSAGE

    def test_sanitizing_is_idempotent(self):
        once = sanitize_html("a <iframe>x</iframe>  <b onclick='y'>b</b>")
        assert sanitize_html(once) == once


@pytest.mark.parametrize(
    "text",
    [
        'look <embed src="https://evil.example/x.swf"> here',
        "hi <iframe src=https://evil.example>",
        '<form action="/steal"><input name=pw>',
        '<object data="x.swf">',
    ],
)
def test_valid_output_never_contains_dangerous_tags(text):
    result = sanitize_and_validate(text)
    lowered = result.sanitized.lower()
    for tag in ("<script", "<iframe", "<object", "<embed", "<form"):
        assert tag not in lowered
