"""Glyph patterns and end-of-turn attention extraction."""

import pytest

from claude_terminal.config.schema import EngineConfig
from claude_terminal.engine.attention import AttentionKind, extract_attention
from claude_terminal.engine.patterns import GlyphPatterns, has_tool_result_marker


@pytest.fixture
def patterns():
    return GlyphPatterns()


class TestTitleGlyphs:
    @pytest.mark.parametrize("glyph", ["⠁", "⠋", "⠙", "⣿"])
    def test_braille_is_spinner(self, patterns, glyph):
        assert patterns.is_spinner(glyph)

    @pytest.mark.parametrize("glyph", ["✳", "a", "·", ""])
    def test_other_glyphs_are_not_spinners(self, patterns, glyph):
        assert not patterns.is_spinner(glyph)

    def test_completion_glyph(self, patterns):
        assert patterns.is_completion("✳")
        assert not patterns.is_completion("✻")

    def test_first_token_skips_punctuation(self, patterns):
        assert patterns.first_token("  Read(foo.txt)") == "Read"
        assert patterns.first_token("…") is None

    def test_glyph_sets_follow_config(self):
        patterns = GlyphPatterns(EngineConfig(completion_glyphs="✳✻", tool_names=["Deploy"]))

        assert patterns.is_completion("✻")
        assert patterns.is_tool("Deploy")
        assert not patterns.is_tool("Read")


class TestRenderedLines:
    @pytest.mark.parametrize(
        "line, duration",
        [
            ("✻ Worked for 1m 51s", "1m 51s"),
            ("  ✶ Cooked for 2h 3m 4s", "2h 3m 4s"),
            ("✳ Hatched for 3s", "3s"),
        ],
    )
    def test_done_line_duration(self, patterns, line, duration):
        assert patterns.done_duration(line) == duration

    @pytest.mark.parametrize("line", ["Worked for 3s", "✻ Worked for a while", "✻ Worked for 3seconds"])
    def test_not_a_done_line(self, patterns, line):
        assert patterns.done_duration(line) is None

    def test_working_line(self, patterns):
        assert patterns.is_working_line("· Pondering…")
        assert patterns.is_working_line("✢ Brewing… (12s · esc to interrupt)")
        assert not patterns.is_working_line("· a plain bullet")

    @pytest.mark.parametrize(
        "line",
        [
            "Allow Bash command? (y/n)",
            "Do you want to proceed?",
            "Approve this change",
            "Overwrite config.json? [yes/no]",
        ],
    )
    def test_permission_lines(self, patterns, line):
        assert patterns.is_permission(line)

    @pytest.mark.parametrize("line", ["All tests passed.", "What is the expected output?"])
    def test_non_permission_lines(self, patterns, line):
        assert not patterns.is_permission(line)

    def test_content_lines_drop_chrome(self, patterns):
        lines = [
            "Here is the fix.",
            "",
            "⠋ Thinking",
            "────────────────",
            "> ",
            "  ? for shortcuts",
            "  ⎿  Read 12 lines",
        ]

        assert patterns.content_lines(lines) == ["Here is the fix.", "  ⎿  Read 12 lines"]

    def test_tool_result_marker(self):
        assert has_tool_result_marker("  ⎿  Read 12 lines")
        assert not has_tool_result_marker("Read 12 lines ⎿")


class TestAttention:
    def test_question_wins_over_permission(self, patterns):
        lines = ["Allow Bash command? (y/n)", "Which database should I use for this project?"]

        attention = extract_attention(lines, patterns)

        assert attention.kind is AttentionKind.QUESTION
        assert attention.text == "Which database should I use for this project?"

    def test_short_question_is_not_a_question(self, patterns):
        assert extract_attention(["Really?"], patterns).kind is AttentionKind.DONE

    def test_overlong_question_is_ignored(self, patterns):
        line = "x" * 200 + "?"

        assert extract_attention([line], patterns).kind is AttentionKind.DONE

    def test_permission_text_is_kept(self, patterns):
        attention = extract_attention(["Running checks", "Allow Bash command? (y/n)"], patterns)

        assert attention.kind is AttentionKind.PERMISSION
        assert attention.text == "Allow Bash command? (y/n)"

    def test_plain_output_is_done(self, patterns):
        assert extract_attention(["All tests passed."], patterns).kind is AttentionKind.DONE

    def test_only_last_lines_are_scanned(self, patterns):
        lines = ["Should I also update the changelog?"] + [f"line {i}" for i in range(40)]

        assert extract_attention(lines, patterns, max_lines=30).kind is AttentionKind.DONE
