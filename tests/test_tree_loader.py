"""Tests for YAML agent files."""

import textwrap

import pytest
from mocks import MockProvider, text_response

from agentree.config.loader import ConfigError
from agentree.errors import ConfigurationError
from agentree.handles.agent import AgentHandle
from agentree.tree.loader import import_tools, load_agent_file, parse_agent_file
from agentree.tree.nodes import NodeKind

TOOLS_MODULE = '''
from agentree.tools.base import NativeTool, tool


@tool(description="Look up a term")
def lookup(term: str) -> str:
    """Look up a term.

    Args:
        term: Term to look up
    """
    return term.upper()


@tool(description="Define a word")
def define(word: str) -> str:
    return word


word_tools = [lookup, define]
fetcher = NativeTool(name="web_fetch", spec={"type": "web_fetch_20250910"})
not_a_tool = 42
'''


@pytest.fixture
def tools_module(tmp_path, monkeypatch):
    """Write an importable module of tools and return its name."""
    (tmp_path / "loader_tools.py").write_text(TOOLS_MODULE)
    monkeypatch.syspath_prepend(str(tmp_path))
    return "loader_tools"


def write_agent(tmp_path, body: str):
    path = tmp_path / "agent.yaml"
    path.write_text(textwrap.dedent(body))
    return path


def test_load_agent_file_builds_tree(tmp_path, tools_module):
    """Test that every section of an agent file becomes part of the tree."""
    path = write_agent(
        tmp_path,
        f"""
        name: researcher
        model: claude-test
        max_iterations: 4
        temperature: 0.3
        system:
          - You are a research assistant.
        context:
          - content: Answer in English.
            priority: 100
        messages:
          - Find the paper.
        tools:
          - {tools_module}:lookup
        native_tools:
          - name: web_search
            type: web_search_20250305
            max_uses: 3
        mcp:
          - name: docs
            url: https://mcp.example.com/sse
        agents:
          - name: writer
            description: Writes the final summary
            system:
              - You write concise summaries.
        """,
    )

    tree = load_agent_file(path)
    handle = AgentHandle(tree, MockProvider())
    instance = handle.instance

    assert tree.kind == NodeKind.AGENT
    assert instance.name == "researcher"
    assert instance.settings.model == "claude-test"
    assert instance.settings.max_iterations == 4
    assert instance.settings.temperature == 0.3
    assert instance.system_prompt() == "You are a research assistant.\n\nAnswer in English."
    assert [m.content for m in instance.messages] == ["Find the paper."]
    assert sorted(instance.tools.names()) == ["lookup", "writer"]
    assert instance.native_tools["web_search"].to_api_format() == {
        "name": "web_search",
        "type": "web_search_20250305",
        "max_uses": 3,
    }
    assert list(instance.mcp_servers) == ["docs"]


@pytest.mark.asyncio
async def test_loaded_agent_runs(tmp_path):
    """Test that a loaded tree runs like a hand-built one."""
    path = write_agent(
        tmp_path,
        """
        model: claude-test
        messages:
          - content: Hello
        """,
    )
    provider = MockProvider([text_response("Hi there")])

    result = await AgentHandle(load_agent_file(path), provider).run()

    assert result.content == "Hi there"
    assert provider.requests[0].messages[0].content == "Hello"


def test_import_tools_accepts_lists_and_dotted_paths(tools_module):
    """Test both import path forms and list-valued attributes."""
    tools = import_tools(f"{tools_module}:word_tools")
    native = import_tools(f"{tools_module}.fetcher")

    assert [t.name for t in tools] == ["lookup", "define"]
    assert native[0].name == "web_fetch"


@pytest.mark.parametrize(
    "path,match",
    [
        ("no_such_module_xyz:tool", "Cannot import"),
        ("loader_tools:missing", "no attribute"),
        ("loader_tools:not_a_tool", "is not a tool"),
        ("justaname", "Invalid tool path"),
    ],
)
def test_import_tools_errors(tools_module, path, match):
    """Test that bad tool paths raise ConfigurationError."""
    with pytest.raises(ConfigurationError, match=match):
        import_tools(path)


def test_unknown_key_is_rejected():
    """Test that typos in an agent file are reported."""
    with pytest.raises(ConfigError, match="validation failed"):
        parse_agent_file({"name": "a", "sytem": ["typo"]})


def test_agent_file_must_be_mapping():
    with pytest.raises(ConfigError, match="must be a mapping"):
        parse_agent_file(["not", "a", "mapping"])


def test_invalid_yaml(tmp_path):
    path = write_agent(tmp_path, "name: [unclosed\n")

    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_agent_file(path)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="Failed to load"):
        load_agent_file(tmp_path / "missing.yaml")
