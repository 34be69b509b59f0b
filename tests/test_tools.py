"""Tests for workspace tools: list_files, list_tree, read_file, search_workspace, semantic_search."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from codexterm.indexer.embedding_index import ChunkHit, EmbeddingIndex
from codexterm.indexer.file_index import FileHit
from codexterm.tools.base import ToolContext, ToolError, format_size
from codexterm.tools.list_files import ListFilesArgs, list_files
from codexterm.tools.list_tree import ListTreeArgs, list_tree
from codexterm.tools.paths import resolve_in_workspace, to_relative
from codexterm.tools.read_file import ReadFileArgs, format_file_content, read_file
from codexterm.tools.search_workspace import SearchWorkspaceArgs, literal_search, search_workspace
from codexterm.tools.semantic_search import SemanticSearchArgs, semantic_search


# ── Path sandboxing ──


class TestResolveInWorkspace:
    def test_relative_inside(self, workspace):
        assert resolve_in_workspace(workspace, "src/util.py") == (workspace / "src" / "util.py").resolve()

    def test_default_is_root(self, workspace):
        assert resolve_in_workspace(workspace, None) == workspace.resolve()
        assert resolve_in_workspace(workspace, "  ") == workspace.resolve()

    def test_parent_escape_rejected(self, workspace):
        with pytest.raises(ToolError, match="outside workspace"):
            resolve_in_workspace(workspace, "../outside")

    def test_absolute_outside_rejected(self, workspace, tmp_path):
        with pytest.raises(ToolError, match="outside workspace"):
            resolve_in_workspace(workspace, str(tmp_path))

    def test_absolute_inside_accepted(self, workspace):
        inner = workspace / "src"
        assert resolve_in_workspace(workspace, str(inner)) == inner.resolve()

    def test_symlink_escape_rejected(self, workspace, tmp_path):
        outside = tmp_path / "secret"
        outside.mkdir()
        (workspace / "link").symlink_to(outside, target_is_directory=True)
        with pytest.raises(ToolError):
            resolve_in_workspace(workspace, "link")

    def test_to_relative(self, workspace):
        assert to_relative(workspace, workspace) == "."
        assert to_relative(workspace / "src" / "util.py", workspace) == "src/util.py"


class TestToolArgs:
    def test_unknown_keys_ignored(self):
        args = ListFilesArgs.model_validate({"path": "src", "colour": "blue"})
        assert args.path == "src"

    def test_bad_response_format_falls_back(self):
        assert ListFilesArgs(response_format="verbose").response_format == "concise"
        assert ReadFileArgs(path="a", response_format="nonsense").response_format == "detailed"
        assert ListFilesArgs(response_format=" DETAILED ").response_format == "detailed"

    def test_numbers_clamped(self):
        assert ListTreeArgs(max_depth=50).max_depth == 10
        assert ListTreeArgs(max_depth=0).max_depth == 1
        assert ReadFileArgs(path="a", max_lines=5000).max_lines == 1000
        assert ReadFileArgs(path="a", start_line=-3).start_line == 1
        assert SearchWorkspaceArgs(query="q", max_results=0).max_results == 1
        assert SemanticSearchArgs(query="q", similarity_threshold=3).similarity_threshold == 1.0

    def test_format_size(self):
        assert format_size(512) == "512 B"
        assert format_size(1536) == "1.5 KB"
        assert format_size(2 * 1024 * 1024) == "2 MB"


# ── list_files ──


class TestListFiles:
    def test_lists_root(self, ctx):
        result = list_files(ListFilesArgs(), ctx)
        assert result.success
        assert result.content.splitlines() == [
            "Directory: .",
            "  [DIR]  bin/",
            "  [DIR]  src/",
            "  [FILE] README.md",
        ]
        assert result.metadata["directory_count"] == 2
        assert result.metadata["file_count"] == 1

    def test_detailed_includes_sizes(self, ctx):
        result = list_files(ListFilesArgs(path="src", response_format="detailed"), ctx)
        assert "Directory: src" in result.content
        assert "util.py (32 bytes)" in result.content

    def test_emits_status_line(self, ctx, sink):
        list_files(ListFilesArgs(path="src"), ctx)
        assert "Listing directory: src" in sink.text

    def test_missing_directory(self, ctx):
        with pytest.raises(ToolError, match="Directory not found"):
            list_files(ListFilesArgs(path="nope"), ctx)


# ── list_tree ──


class TestListTree:
    def test_default_excludes(self, ctx):
        result = list_tree(ListTreeArgs(), ctx)
        assert "bin" not in result.content
        assert "📁 src/" in result.content
        assert "📄 Program.cs" in result.content
        assert result.metadata["excluded_items"] == 1

    def test_connectors(self, ctx):
        lines = list_tree(ListTreeArgs(path="src"), ctx).content.splitlines()
        assert lines == ["├── 📄 Program.cs", "└── 📄 util.py"]

    def test_depth_limit(self, workspace, ctx):
        deep = workspace / "a" / "b" / "c"
        deep.mkdir(parents=True)
        (deep / "deep.txt").write_text("x")
        content = list_tree(ListTreeArgs(path="a", max_depth=2), ctx).content
        assert "📁 b/" in content
        assert "📁 c/" in content
        assert "deep.txt" not in content

    def test_directories_only(self, ctx):
        result = list_tree(ListTreeArgs(show_files=False), ctx)
        assert "📄" not in result.content
        assert result.metadata["total_files"] == 0

    def test_detailed_header(self, ctx):
        content = list_tree(ListTreeArgs(response_format="detailed"), ctx).content
        assert content.startswith("Directory tree for: .")
        assert "(2 items)" in content


# ── read_file ──


class TestReadFile:
    def test_numbered_output(self, ctx):
        result = read_file(ReadFileArgs(path="src/util.py"), ctx)
        assert result.success
        lines = result.content.splitlines()
        assert lines[0] == "File: src/util.py (lines 1-2 of 2)"
        assert lines[2] == "     1 | def add(a, b):"
        assert result.metadata["total_lines"] == 2
        assert result.metadata["truncated"] is False

    def test_range_and_truncation_note(self, ctx):
        result = read_file(ReadFileArgs(path="src/Program.cs", start_line=3, max_lines=2), ctx)
        assert "(lines 3-4 of 9)" in result.content
        assert "Use start_line=5" in result.content
        assert result.metadata["lines_read"] == 2
        assert result.metadata["truncated"] is True

    def test_concise_is_raw(self, ctx):
        result = read_file(ReadFileArgs(path="src/util.py", response_format="concise"), ctx)
        assert result.content == "def add(a, b):\n    return a + b"

    def test_missing_file(self, ctx):
        with pytest.raises(ToolError, match="File not found"):
            read_file(ReadFileArgs(path="missing.cs"), ctx)

    def test_directory_is_not_a_file(self, ctx):
        with pytest.raises(ToolError, match="Not a file"):
            read_file(ReadFileArgs(path="src"), ctx)

    def test_start_past_end(self, ctx):
        with pytest.raises(ToolError, match="past the end"):
            read_file(ReadFileArgs(path="src/util.py", start_line=10), ctx)

    def test_path_required(self):
        with pytest.raises(ValueError):
            ReadFileArgs(path="   ")

    def test_format_file_content_remaining(self):
        out = format_file_content(["a", "b"], "x.txt", 1, 5)
        assert out.endswith("... (3 more lines. Use start_line=3 to read more.)")


# ── search_workspace ──


class TestLiteralSearch:
    def test_finds_with_context(self, workspace):
        matches = literal_search(workspace, "writeline", 10)
        assert len(matches) == 1
        m = matches[0]
        assert m.file_path == "src/Program.cs"
        assert m.line_number == 7
        assert m.before == "{"
        assert m.after == "}"

    def test_case_sensitive(self, workspace):
        assert literal_search(workspace, "writeline", 10, case_sensitive=True) == []
        assert len(literal_search(workspace, "WriteLine", 10, case_sensitive=True)) == 1

    def test_extension_filter(self, workspace):
        matches = literal_search(workspace, "a", 100, extensions=[".py"])
        assert {m.file_path for m in matches} == {"src/util.py"}

    def test_max_results(self, workspace):
        assert len(literal_search(workspace, "a", 2)) == 2

    def test_skips_ignored_dirs(self, workspace):
        assert literal_search(workspace, "configuration", 10) == []


class TestSearchWorkspace:
    def test_text_search_without_index(self, ctx):
        result = search_workspace(SearchWorkspaceArgs(query="return a + b"), ctx)
        assert result.metadata["search_type"] == "text_search"
        assert "src/util.py:2: return a + b" in result.content

    def test_no_matches(self, ctx):
        result = search_workspace(SearchWorkspaceArgs(query="no such text anywhere"), ctx)
        assert result.success
        assert result.content == "No matches found for the search query."

    def test_uses_file_index(self, workspace, sink):
        index = MagicMock()
        index.has_content.return_value = True
        index.search.return_value = [FileHit("src/util.py", 0.8, "def add(a, b):")]
        ctx = ToolContext(workspace_root=workspace, append=sink, file_index=index)
        result = search_workspace(SearchWorkspaceArgs(query="addition", file_extensions=["py"]), ctx)
        index.search.assert_called_once_with("addition", 20, extensions=["py"])

        assert result.metadata["search_type"] == "semantic_search"
        assert result.metadata["total_matches"] == 1
        assert "src/util.py (similarity: 0.80)" in result.content
        assert "Using semantic search" in sink.text

    def test_falls_back_when_index_fails(self, workspace, sink):
        index = MagicMock()
        index.has_content.return_value = True
        index.search.side_effect = RuntimeError("index exploded")
        ctx = ToolContext(workspace_root=workspace, append=sink, file_index=index)
        result = search_workspace(SearchWorkspaceArgs(query="WriteLine"), ctx)

        assert result.metadata["search_type"] == "text_search"
        assert "falling back" in sink.text


# ── semantic_search ──


class TestSemanticSearch:
    def test_requires_index(self, ctx):
        with pytest.raises(ToolError, match="not available"):
            semantic_search(SemanticSearchArgs(query="x"), ctx)

    def test_requires_content(self, workspace, embedder):
        ctx = ToolContext(workspace_root=workspace, chunk_index=EmbeddingIndex(workspace, embedder))
        with pytest.raises(ToolError, match="No files indexed"):
            semantic_search(SemanticSearchArgs(query="x"), ctx)

    def test_results_above_threshold(self, workspace, embedder):
        index = EmbeddingIndex(workspace, embedder)
        index.build_or_update()
        ctx = ToolContext(workspace_root=workspace, chunk_index=index)
        result = semantic_search(SemanticSearchArgs(query="def add return", similarity_threshold=0.1), ctx)

        assert result.content.splitlines()[0] == "📄 src/util.py:1"
        assert result.metadata["indexed_chunks"] == index.count
        assert result.metadata["best_similarity"] >= result.metadata["average_similarity"]

    def test_reports_best_below_threshold(self, workspace):
        index = MagicMock()
        index.count = 4
        index.search.return_value = [ChunkHit("a.cs", 1, "class A", 0.12)]
        ctx = ToolContext(workspace_root=workspace, chunk_index=index)
        result = semantic_search(SemanticSearchArgs(query="x", similarity_threshold=0.5), ctx)
        assert result.content == "No results above similarity threshold 0.50. Best match was 0.12"
