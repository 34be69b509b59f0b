"""Shared fixtures: a small sample workspace plus display and embedding fakes."""

import pytest

from codexterm.tools.base import ToolContext
from codexterm.tools.registry import build_tool_registry
from tests.helpers import FakeEmbedder, RecordingSink


@pytest.fixture
def workspace(tmp_path):
    """Workspace with a couple of source files, a nested folder and build output."""
    root = tmp_path / "ws"
    root.mkdir()

    (root / "src").mkdir()
    (root / "src" / "Program.cs").write_text(
        "using System;\n"
        "\n"
        "class Program\n"
        "{\n"
        "    static void Main()\n"
        "    {\n"
        "        Console.WriteLine(\"hello world\");\n"
        "    }\n"
        "}\n"
    )
    (root / "src" / "util.py").write_text("def add(a, b):\n    return a + b\n")
    (root / "README.md").write_text("# Sample project\n\nA tiny workspace for tests.\n")
    (root / "bin").mkdir()
    (root / "bin" / "Program.dll.config").write_text("<configuration />\n")
    return root


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def ctx(workspace, sink):
    return ToolContext(workspace_root=workspace, append=sink)


@pytest.fixture
def registry():
    return build_tool_registry()
