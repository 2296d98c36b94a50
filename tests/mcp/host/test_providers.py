"""Tests for host resources and prompt templates."""

import pytest

from mcpilot.lib import oj
from mcpilot.mcp.host import PromptTemplateProvider, StateResourceProvider, WorkspaceResourceProvider
from mcpilot.mcp.host.providers import MAX_TREE_ENTRIES


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("print('hi')\n")
    (root / "README.md").write_text("# readme")
    (tmp_path / "secret.txt").write_text("do not read")
    return root


class TestWorkspaceResourceProvider:
    """Tests for workspace tree and file resources."""

    def test_lists_two_resources(self, workspace, session):
        uris = [r.uri for r in WorkspaceResourceProvider(workspace).list_resources(session)]
        assert uris == [
            "mcpilot://workspace/tree",
            "mcpilot://workspace/file?path=<workspace-relative-path>",
        ]

    def test_tree_is_sorted(self, workspace, session):
        result = WorkspaceResourceProvider(workspace).read_resource("mcpilot://workspace/tree", session)
        assert result.first_text == "README.md\nsrc"

    def test_tree_is_truncated(self, tmp_path, session):
        for i in range(MAX_TREE_ENTRIES + 5):
            (tmp_path / f"f{i:04d}").touch()
        text = WorkspaceResourceProvider(tmp_path).read_resource("mcpilot://workspace/tree", session).first_text
        lines = text.split("\n")
        assert len(lines) == MAX_TREE_ENTRIES
        assert lines[0] == "f0000"

    def test_reads_file(self, workspace, session):
        provider = WorkspaceResourceProvider(workspace)
        result = provider.read_resource("mcpilot://workspace/file?path=src/main.py", session)
        assert result.to_dict() == {
            "contents": [
                {"uri": "mcpilot://workspace/file?path=src/main.py", "mimeType": "text/plain", "text": "print('hi')\n"}
            ]
        }

    def test_url_encoded_path(self, workspace, session):
        result = WorkspaceResourceProvider(workspace).read_resource(
            "mcpilot://workspace/file?path=src%2Fmain.py", session
        )
        assert result.first_text == "print('hi')\n"

    def test_traversal_refused(self, workspace, session):
        result = WorkspaceResourceProvider(workspace).read_resource(
            "mcpilot://workspace/file?path=../secret.txt", session
        )
        assert result.first_text == "Path traversal is not allowed"

    def test_missing_path_argument(self, workspace, session):
        result = WorkspaceResourceProvider(workspace).read_resource("mcpilot://workspace/file", session)
        assert result.first_text == "Missing 'path' query argument"

    def test_missing_file(self, workspace, session):
        result = WorkspaceResourceProvider(workspace).read_resource(
            "mcpilot://workspace/file?path=nope.txt", session
        )
        assert result.first_text.startswith("File not found: ")

    def test_foreign_uri_is_not_handled(self, workspace, session):
        assert WorkspaceResourceProvider(workspace).read_resource("file:///etc/hosts", session) is None


class TestStateResourceProvider:
    def test_snapshot_includes_session_id(self, session):
        provider = StateResourceProvider(lambda s: {"mcpServers": {"fs": "RUNNING"}})

        result = provider.read_resource("mcpilot://state/session", session)

        assert result.contents[0].mime_type == "application/json"
        assert oj.loads(result.first_text) == {"sessionId": session.session_id, "mcpServers": {"fs": "RUNNING"}}
        assert provider.read_resource("mcpilot://state/other", session) is None


class TestPromptTemplateProvider:
    """Tests for the built-in prompt templates."""

    def test_lists_templates(self):
        names = [p.name for p in PromptTemplateProvider().list_prompts()]
        assert names == ["build", "plan", "explore", "subagent"]

    def test_get_prompt(self):
        result = PromptTemplateProvider().get_prompt("plan", {})

        data = result.to_dict()
        assert data["description"] == "mcpilot prompt template: plan"
        assert data["messages"][0]["role"] == "system"
        assert "planning agent" in data["messages"][0]["content"]["text"]

    def test_subagent_defaults(self):
        text = PromptTemplateProvider().get_prompt("subagent", {}).messages[0].content.text
        assert "profile 'mcp'" in text
        assert "Task: MCP prompt request" in text
        assert "Read-only: true" in text

    def test_subagent_arguments(self):
        result = PromptTemplateProvider().get_prompt(
            "subagent", {"profile": "reviewer", "description": "Review the diff", "readOnly": False}
        )
        text = result.messages[0].content.text
        assert "profile 'reviewer'" in text
        assert "Task: Review the diff" in text
        assert "Read-only: False" in text

    def test_unknown_prompt(self):
        assert PromptTemplateProvider().get_prompt("deploy", {}) is None
