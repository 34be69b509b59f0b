"""Tests for CodexSession: routing, history truncation and the tool loop."""

from __future__ import annotations

import pytest

from codexterm.agent.provider import ProviderError
from codexterm.agent.session import (
    FINAL_ANSWER_INSTRUCTION,
    CodexSession,
    Message,
    SessionState,
    describe_progress,
    split_args,
)
from codexterm.indexer.embedding_index import EmbeddingIndex
from codexterm.indexer.file_index import FileEmbeddingIndex
from tests.helpers import ScriptedProvider

LIST_CALL = 'list_files({"path": "."})'


# ── Fixtures ──


@pytest.fixture
def make_session(workspace, sink, registry):
    """Factory for a started session over the sample workspace."""
    sessions = []

    def _make(provider=None, start=True, **kwargs):
        provider = provider or ScriptedProvider()
        s = CodexSession(provider, registry, workspace, sink, **kwargs)
        if start:
            s.start()
        sessions.append(s)
        return s

    yield _make
    for s in sessions:
        s.stop()


# ── Lifecycle ──


class TestLifecycle:
    def test_start_seeds_system_prompt(self, make_session, sink):
        session = make_session()
        assert session.state is SessionState.ACTIVE
        assert [m.role for m in session.messages] == ["system"]
        assert "- read_file:" in session.messages[0].content
        assert '"function": "read_file"' in session.messages[0].content
        assert "interactive mode enabled" in sink.text

    def test_failed_connection_stays_inactive(self, make_session, sink):
        session = make_session(ScriptedProvider(connected=False), start=False)
        assert session.start() is False
        assert session.state is SessionState.INACTIVE
        assert sink.text.count("Cannot connect") == 1

        session.handle_input("hello")
        assert "not active" in sink.text

    def test_stop(self, make_session, sink):
        session = make_session()
        session.stop()
        assert not session.is_active
        assert "mode exited" in sink.text


# ── Conversation ──


class TestConversation:
    def test_plain_answer(self, make_session, sink):
        provider = ScriptedProvider(["Hi there, how can I help?"])
        session = make_session(provider)
        session.handle_input("hello")

        assert len(provider.prompts) == 1
        assert provider.prompts[0].endswith("User: hello\n\nAssistant:")
        assert "Hi there, how can I help?" in sink.styled("assistant")
        assert [m.role for m in session.messages] == ["system", "user", "assistant"]

    def test_blank_input_ignored(self, make_session):
        provider = ScriptedProvider(["unused"])
        session = make_session(provider)
        session.handle_input("   ")
        assert provider.prompts == []

    def test_history_truncated_before_model_call(self, make_session):
        provider = ScriptedProvider(["ok"])
        session = make_session(provider)
        for i in range(1, 11):
            role = "user" if i % 2 else "assistant"
            session.messages.append(Message(role, f"turn-{i:02d}"))

        session.handle_input("newest question")

        prompt = provider.prompts[0]
        assert prompt.startswith("System: You are Codex")
        for i in range(1, 4):
            assert f"turn-{i:02d}" not in prompt
        for i in range(4, 11):
            assert f"turn-{i:02d}" in prompt
        assert "User: newest question" in prompt
        non_system = [m for m in session.messages if m.role != "system"]
        assert non_system[0].content == "turn-04"
        assert session.messages[0].role == "system"

    def test_truncate_history_keeps_system(self, make_session):
        session = make_session(history_window=2)
        session.messages += [Message("user", "a"), Message("assistant", "b"), Message("user", "c")]
        session.truncate_history()
        assert [m.content for m in session.messages[1:]] == ["b", "c"]
        assert session.messages[0].role == "system"

    def test_tool_round_then_final_answer(self, make_session, sink):
        provider = ScriptedProvider([
            'Let me check.\n{"function": "read_file", "arguments": {"path": "src/util.py"}}',
            "It defines add.",
            "util.py defines add(a, b), which returns the sum.",
        ])
        session = make_session(provider)
        session.handle_input("what is in util.py?")

        assert len(provider.prompts) == 3
        assert "📄 read_file result" in provider.prompts[1]
        assert FINAL_ANSWER_INSTRUCTION in provider.prompts[2]
        assert "read_file result" in sink.styled("tool")
        assert session.messages[-1].content == "util.py defines add(a, b), which returns the sum."

    def test_round_ceiling(self, make_session, sink):
        provider = ScriptedProvider(default=LIST_CALL)
        session = make_session(provider, max_rounds=3)
        session.handle_input("list everything forever")

        # three tool rounds plus the final-answer request
        assert len(provider.prompts) == 4
        assert sink.text.count("Stopped after 3 tool rounds") == 1
        assert session.is_active

    def test_empty_response_hint(self, make_session, sink):
        session = make_session(ScriptedProvider([""]))
        session.handle_input("hello?")
        assert "No response from model" in sink.text

    def test_provider_error_keeps_session(self, make_session, sink):
        provider = ScriptedProvider([ProviderError("connection reset"), "recovered"])
        session = make_session(provider)
        session.handle_input("first")
        assert "Error: connection reset" in sink.styled("error")
        assert session.is_active

        session.handle_input("second")
        assert "recovered" in sink.styled("assistant")


# ── Shortcuts ──


class TestShortcuts:
    def test_list_files_bypasses_model(self, make_session, sink):
        provider = ScriptedProvider()
        session = make_session(provider)
        session.handle_input("list files src")
        assert provider.prompts == []
        assert "🔍 list_files result" in sink.text
        assert "[FILE] util.py" in sink.text

    def test_ls_defaults_to_root(self, make_session, sink):
        session = make_session()
        session.handle_input("ls")
        assert "[DIR]  src/" in sink.text

    def test_tree(self, make_session, sink):
        session = make_session()
        session.handle_input("tree src")
        assert "🌳 list_tree result" in sink.text

    def test_open_with_head(self, make_session, sink):
        session = make_session()
        session.handle_input("open src/Program.cs --head 2")
        assert "(lines 1-2 of 9)" in sink.text

    def test_search(self, make_session, sink):
        session = make_session()
        session.handle_input("search WriteLine --max 5")
        assert "src/Program.cs:7" in sink.text

    def test_shortcut_errors_shown(self, make_session, sink):
        session = make_session()
        session.handle_input("open ../etc/passwd")
        assert "outside workspace" in sink.styled("error")

    def test_shortcuts_do_not_touch_history(self, make_session):
        session = make_session()
        session.handle_input("ls")
        assert len(session.messages) == 1


# ── Management commands ──


class TestCommands:
    def test_help(self, make_session, sink):
        make_session().handle_input("/help")
        assert "/reindex" in sink.text

    def test_clear(self, make_session, sink):
        session = make_session(ScriptedProvider(["answer"]))
        session.handle_input("question")
        session.handle_input("/clear")
        assert [m.role for m in session.messages] == ["system"]
        assert "Conversation cleared" in sink.text

    def test_unknown_command(self, make_session, sink):
        make_session().handle_input("/frobnicate")
        assert "Unknown command" in sink.text

    def test_models_marks_current(self, make_session, sink):
        make_session().handle_input("/models")
        assert " * qwen2.5-coder:7b" in sink.text
        assert "   llama3:latest" in sink.text

    def test_switch_model(self, make_session, sink):
        session = make_session()
        session.handle_input("/model llama3")
        assert session.provider.current_model == "llama3:latest"
        assert "Successfully switched" in sink.text

    def test_switch_model_unknown(self, make_session, sink):
        session = make_session()
        session.handle_input("/model mistral")
        assert session.provider.current_model == "qwen2.5-coder:7b"
        assert "Failed to switch" in sink.text

    def test_missing_argument_usage(self, make_session, sink):
        make_session().handle_input("/model")
        assert "Usage: /model <name>" in sink.text

    def test_pull(self, make_session, sink):
        session = make_session()
        session.handle_input('/pull "phi3:mini"')
        assert session.provider.pulled == ["phi3:mini"]
        assert "Successfully pulled phi3:mini" in sink.text

    def test_exit(self, make_session):
        session = make_session()
        session.handle_input("/exit")
        assert not session.is_active

    def test_index_without_indexes(self, make_session, sink):
        make_session().handle_input("/index")
        assert "not configured" in sink.text

    def test_index_and_reindex(self, make_session, sink, workspace, embedder):
        session = make_session(
            chunk_index=EmbeddingIndex(workspace, embedder),
            file_index=FileEmbeddingIndex(workspace, embedder),
        )
        session.handle_input("/index")
        assert "Chunk index: updated 3 files" in sink.text
        assert "File index: updated 3 files" in sink.text

        embedder.calls = 0
        session.handle_input("/index")
        assert embedder.calls == 0

        session.handle_input("/reindex")
        assert "Clearing semantic index" in sink.text
        assert embedder.calls > 0


class TestHelpers:
    def test_split_args_quotes(self):
        assert split_args('/pull "my model:latest"') == ["/pull", "my model:latest"]

    def test_split_args_unbalanced(self):
        assert split_args('/model "broken') == ["/model", '"broken']

    def test_describe_progress(self):
        assert describe_progress({"step": "index", "status": "scan", "total": 9, "pending": 2}) == (
            "🔍 2 new/modified files (out of 9 total)"
        )
        assert describe_progress({"step": "file_index", "status": "scan", "total": 9, "pending": 2}) is None
        assert describe_progress({"step": "index", "status": "mystery"}) is None
