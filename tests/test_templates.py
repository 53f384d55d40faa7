"""Tests for Anki template parsing and rendering."""

from flashcard_ingest.templates import FieldRef, Literal, Section, parse_template, render_template


class TestParseTemplate:
    def test_literal_and_field(self):
        nodes = parse_template("Q: {{Front}}")
        assert nodes == [Literal("Q: "), FieldRef("Front")]

    def test_filters(self):
        assert parse_template("{{text:Front}}") == [FieldRef("Front", ("text",))]

    def test_nested_sections(self):
        nodes = parse_template("{{#A}}a{{^B}}b{{/B}}{{/A}}")
        assert nodes == [Section("A", False, [Literal("a"), Section("B", True, [Literal("b")])])]

    def test_comment_ignored(self):
        assert parse_template("{{! note }}x") == [Literal("x")]

    def test_unmatched_closer_ignored(self):
        assert parse_template("x{{/Nope}}y") == [Literal("x"), Literal("y")]


class TestRenderTemplate:
    """Test rendering against a field map."""

    fields = {"Front": "Bonjour", "Back": "Hello", "Extra": ""}

    def test_substitution(self):
        assert render_template("{{Front}} / {{Back}}", self.fields) == "Bonjour / Hello"

    def test_unknown_field_is_empty(self):
        assert render_template("[{{Missing}}]", self.fields) == "[]"

    def test_positive_section(self):
        assert render_template("{{#Back}}has back{{/Back}}", self.fields) == "has back"
        assert render_template("{{#Extra}}has extra{{/Extra}}", self.fields) == ""

    def test_inverted_section(self):
        assert render_template("{{^Extra}}no extra{{/Extra}}", self.fields) == "no extra"
        assert render_template("{{^Back}}no back{{/Back}}", self.fields) == ""

    def test_front_side(self):
        result = render_template("{{FrontSide}}<hr id=answer>{{Back}}", self.fields, front_side="Bonjour")
        assert result == "Bonjour<hr id=answer>Hello"

    def test_type_filter_renders_nothing(self):
        assert render_template("{{Front}}{{type:Back}}", self.fields) == "Bonjour"

    def test_unclosed_section_runs_to_end(self):
        assert render_template("{{#Front}}shown {{Back}}", self.fields) == "shown Hello"

    def test_field_named_like_a_section_value(self):
        """Field values are inserted verbatim and never re-parsed."""
        assert render_template("{{Front}}", {"Front": "{{Back}}", "Back": "x"}) == "{{Back}}"
