"""Tests for the JSON-based parsers: ChatGPT, Claude, Claude Code, Cursor, generic file."""

import json
import math
import time

import pytest

from promptvault.importer.errors import ImportFormatError, UnsupportedFormatError
from promptvault.importer.parsers.base import to_millis
from promptvault.importer.parsers.chatgpt import ChatGPTParser
from promptvault.importer.parsers.claude import ClaudeCodeParser, ClaudeParser
from promptvault.importer.parsers.cursor import CursorParser, CursorSQLiteParser
from promptvault.importer.parsers.file import FileParser
from promptvault.models import SourceKind
from tests.fixtures import (
    make_chatgpt_conversation,
    make_chatgpt_export,
    make_claude_code_jsonl,
    make_claude_conversation,
    make_cursor_session,
    make_raw,
)


class TestChatGPTParser:

    def test_only_user_turns_extracted(self):
        export = make_chatgpt_export(make_chatgpt_conversation(["What is Python?", "Tell me more."]))
        prompts = ChatGPTParser().parse(make_raw("conversations.json", export))
        assert [p.content for p in prompts] == ["What is Python?", "Tell me more."]
        assert all(p.metadata.source is SourceKind.CHATGPT for p in prompts)

    def test_metadata_from_conversation(self):
        conv = make_chatgpt_conversation(["Hi"], conv_id="c-42", title="Greetings",
                                         model_slug="gpt-4o", create_time=1700000000.0)
        prompt = ChatGPTParser().parse(make_raw("c.json", json.dumps(conv)))[0]
        assert prompt.metadata.conversation_id == "c-42"
        assert prompt.metadata.conversation_title == "Greetings"
        assert prompt.metadata.model == "gpt-4o"
        assert prompt.metadata.timestamp_millis == 1700000000000
        assert prompt.metadata.message_index == 0

    def test_out_of_range_create_time_uses_current_time(self):
        export = make_chatgpt_export(make_chatgpt_conversation(["Hi"]))
        export = export.replace("1700000000.0", "1e400")
        before = int(time.time() * 1000)
        prompt = ChatGPTParser().parse(make_raw("c.json", export))[0]
        assert prompt.metadata.timestamp_millis >= before

    def test_wrapped_conversations_object(self):
        data = {"conversations": [make_chatgpt_conversation(["One"]),
                                  make_chatgpt_conversation(["Two", "Three"])]}
        prompts = ChatGPTParser().parse(make_raw("c.json", json.dumps(data)))
        assert len(prompts) == 3

    def test_model_inferred_from_template(self):
        conv = make_chatgpt_conversation(["Hi"], model_slug=None)
        conv["conversation_template_id"] = "g-gpt-4-custom"
        prompt = ChatGPTParser().parse(make_raw("c.json", json.dumps(conv)))[0]
        assert prompt.metadata.model == "gpt-4"

    def test_parts_joined_and_non_strings_ignored(self):
        conv = make_chatgpt_conversation(["placeholder"])
        conv["mapping"]["u0"]["message"]["content"]["parts"] = ["line one", {"image": 1}, "line two"]
        prompt = ChatGPTParser().parse(make_raw("c.json", json.dumps(conv)))[0]
        assert prompt.content == "line one\nline two"

    def test_long_first_line_truncated_in_title(self):
        text = "x" * 80
        prompt = ChatGPTParser().parse(
            make_raw("c.json", make_chatgpt_export(make_chatgpt_conversation([text])))
        )[0]
        assert prompt.title == "x" * 50 + "..."

    def test_invalid_json_raises_format_error(self):
        with pytest.raises(ImportFormatError) as exc:
            ChatGPTParser().parse(make_raw("c.json", '{"mapping": '))
        assert "invalid" in str(exc.value).lower()
        assert "format" in str(exc.value).lower()

    def test_empty_list_yields_nothing(self):
        assert ChatGPTParser().parse(make_raw("c.json", "[]")) == []

    def test_validate(self):
        parser = ChatGPTParser()
        assert parser.validate(make_raw("c.json", make_chatgpt_export(make_chatgpt_conversation(["a"]))))
        assert not parser.validate(make_raw("c.json", "not json"))


class TestClaudeParser:

    def test_human_turns_only(self):
        export = json.dumps([make_claude_conversation(["Hello!", "How are you?"])])
        prompts = ClaudeParser().parse(make_raw("claude.json", export))
        assert [p.content for p in prompts] == ["Hello!", "How are you?"]
        assert prompts[0].metadata.model == "claude-sonnet-4-6"
        assert prompts[0].metadata.conversation_id == "conv-claude-1"

    def test_text_from_content_blocks(self):
        conv = make_claude_conversation(["From blocks"], as_blocks=True)
        prompts = ClaudeParser().parse(make_raw("claude.json", json.dumps(conv)))
        assert prompts[0].content == "From blocks"

    def test_legacy_messages_key(self):
        conv = make_claude_conversation(["Legacy"])
        conv["messages"] = conv.pop("chat_messages")
        data = {"conversations": [conv]}
        prompts = ClaudeParser().parse(make_raw("claude.json", json.dumps(data)))
        assert [p.content for p in prompts] == ["Legacy"]

    def test_unrecognized_object_raises(self):
        with pytest.raises(ImportFormatError):
            ClaudeParser().parse(make_raw("claude.json", '{"foo": 1}'))


class TestClaudeCodeParser:

    def test_jsonl_user_messages(self):
        content = make_claude_code_jsonl(["Refactor utils", "Add tests"], session_id="s-9")
        prompts = ClaudeCodeParser().parse(make_raw("session.jsonl", content))
        assert [p.content for p in prompts] == ["Refactor utils", "Add tests"]
        assert prompts[0].metadata.conversation_id == "s-9"
        assert prompts[0].metadata.model == "claude-3.5-sonnet"

    def test_malformed_lines_skipped(self, caplog):
        good = make_claude_code_jsonl(["Keep me"])
        content = "{not json\n" + good
        prompts = ClaudeCodeParser().parse(make_raw("session.jsonl", content))
        assert [p.content for p in prompts] == ["Keep me"]
        assert "malformed JSONL line 1" in caplog.text

    def test_top_level_role_and_string_content(self):
        content = json.dumps({"role": "user", "content": "Plain string"}) + "\n"
        prompts = ClaudeCodeParser().parse(make_raw("s.jsonl", content))
        assert prompts[0].content == "Plain string"
        assert prompts[0].metadata.extra == {"line": 1}


class TestCursorParser:

    def test_array_of_sessions(self):
        data = [make_cursor_session(["Explain this hook"]), make_cursor_session(["Add types"], "c2")]
        prompts = CursorParser().parse(make_raw("cursor.json", json.dumps(data)))
        assert [p.content for p in prompts] == ["Explain this hook", "Add types"]
        assert prompts[0].metadata.extra == {"workspace": "/home/dev/app"}

    def test_sessions_object_and_single_session(self):
        wrapped = {"sessions": [make_cursor_session(["One"])]}
        single = make_cursor_session(["Two"])
        parser = CursorParser()
        assert parser.parse(make_raw("a.json", json.dumps(wrapped)))[0].content == "One"
        assert parser.parse(make_raw("b.json", json.dumps(single)))[0].content == "Two"

    def test_unrecognized_structure_raises(self):
        with pytest.raises(ImportFormatError):
            CursorParser().parse(make_raw("a.json", '{"other": true}'))

    def test_sqlite_rejected_with_instructions(self):
        raw = make_raw("state.vscdb", b"SQLite format 3\x00" + b"\x00" * 100)
        assert CursorSQLiteParser().validate(raw)
        with pytest.raises(UnsupportedFormatError) as exc:
            CursorSQLiteParser().parse(raw)
        assert "export your Cursor chats as JSON" in str(exc.value)
        with pytest.raises(UnsupportedFormatError):
            CursorParser().parse(raw)


class TestFileParser:

    def test_json_list_of_prompt_objects(self):
        data = [{"name": "Summarize", "content": "Summarize this text"},
                {"title": "Translate", "prompt": "Translate to French"},
                {"text": "No name"}]
        prompts = FileParser().parse(make_raw("prompts.json", json.dumps(data)))
        assert [p.title for p in prompts] == ["Summarize", "Translate", "Prompt 3"]
        assert [p.content for p in prompts][1] == "Translate to French"

    def test_single_object_uses_file_stem(self):
        prompts = FileParser().parse(make_raw("review.json", '{"content": "Review my PR"}'))
        assert prompts[0].title == "review"

    def test_plain_text_split_on_blank_lines(self):
        text = "First prompt\nwith two lines\n\n\nSecond prompt\n   \nThird"
        prompts = FileParser().parse(make_raw("notes.txt", text))
        assert [p.content for p in prompts] == ["First prompt\nwith two lines", "Second prompt", "Third"]
        assert prompts[0].title == "First prompt"

    def test_empty_file_yields_nothing(self):
        assert FileParser().parse(make_raw("empty.txt", "   \n")) == []

    def test_invalid_utf8_raises(self):
        with pytest.raises(ImportFormatError) as exc:
            FileParser().parse(make_raw("bin.txt", b"\xff\xfe\xfa"))
        assert "not valid UTF-8" in str(exc.value)


class TestToMillis:

    def test_seconds_and_millis(self):
        assert to_millis(1700000000) == 1700000000000
        assert to_millis(1700000000000) == 1700000000000

    def test_iso_string(self):
        assert to_millis("2024-01-15T00:00:00Z") == 1705276800000

    @pytest.mark.parametrize("value", [math.inf, -math.inf, math.nan, "inf", "NaN", "1e400", -1e308])
    def test_non_finite_falls_back(self, value):
        assert to_millis(value, 42) == 42

    def test_missing_falls_back(self):
        assert to_millis(None, 7) == 7
        assert to_millis(True, 7) == 7
