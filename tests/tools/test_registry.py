"""Tests for the tool registry and permission managers."""

import pytest

from fakes import EchoTool, StaticTool
from mcpilot.tools import (
    CallbackPermissionManager,
    PermissionDecision,
    StaticPermissionManager,
    ToolRegistry,
    ToolResult,
)


class TestToolRegistry:
    """Tests for static and dynamic registration."""

    def test_static_duplicate_rejected(self):
        registry = ToolRegistry([EchoTool()])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(EchoTool())

    def test_dynamic_cannot_replace_static(self):
        registry = ToolRegistry([StaticTool("mcp_s_read")])
        with pytest.raises(ValueError, match="static"):
            registry.register_dynamic_tool(StaticTool("mcp_s_read"))

    def test_dynamic_replaces_dynamic(self):
        registry = ToolRegistry()
        registry.register_dynamic_tool(StaticTool("mcp_s_read", output="one"))
        replacement = StaticTool("mcp_s_read", output="two")
        registry.register_dynamic_tool(replacement)
        assert registry.get_tool("mcp_s_read") is replacement

    def test_replace_group_is_atomic_per_prefix(self):
        registry = ToolRegistry()
        registry.replace_tools_by_prefix("mcp_a_", [StaticTool("mcp_a_x"), StaticTool("mcp_a_y")])
        registry.replace_tools_by_prefix("mcp_b_", [StaticTool("mcp_b_x")])

        count = registry.replace_tools_by_prefix("mcp_a_", [StaticTool("mcp_a_z")])

        assert count == 1
        assert registry.get_tool_names() == ["mcp_a_z", "mcp_b_x"]

    def test_replace_rejects_foreign_names(self):
        registry = ToolRegistry()
        with pytest.raises(ValueError, match="does not match prefix"):
            registry.replace_tools_by_prefix("mcp_a_", [StaticTool("mcp_b_x")])

    def test_unregister_by_prefix_leaves_static_tools(self):
        registry = ToolRegistry([StaticTool("mcp_a_static")])
        registry.replace_tools_by_prefix("mcp_a_", [StaticTool("mcp_a_dyn")])

        assert registry.unregister_tools_by_prefix("mcp_a_") == 1
        assert registry.get_tool_names() == ["mcp_a_static"]

    def test_owner_scopes_nested_prefixes(self):
        registry = ToolRegistry()
        registry.replace_tools_by_prefix("mcp_foo_", [StaticTool("mcp_foo_echo")], owner="foo")
        registry.replace_tools_by_prefix("mcp_foo_bar_", [StaticTool("mcp_foo_bar_echo")], owner="foo_bar")

        registry.replace_tools_by_prefix("mcp_foo_", [StaticTool("mcp_foo_read")], owner="foo")
        assert registry.get_tool_names() == ["mcp_foo_bar_echo", "mcp_foo_read"]

        assert registry.unregister_tools_by_prefix("mcp_foo_", owner="foo") == 1
        assert registry.get_tool_names() == ["mcp_foo_bar_echo"]

    def test_other_owners_names_are_skipped(self):
        registry = ToolRegistry()
        theirs = StaticTool("mcp_foo_bar_echo")
        registry.replace_tools_by_prefix("mcp_foo_bar_", [theirs], owner="foo_bar")

        count = registry.replace_tools_by_prefix(
            "mcp_foo_", [StaticTool("mcp_foo_bar_echo"), StaticTool("mcp_foo_x")], owner="foo"
        )

        assert count == 1
        assert registry.get_tool("mcp_foo_bar_echo") is theirs

    def test_lookup(self):
        registry = ToolRegistry([StaticTool("b"), StaticTool("a")])
        assert [t.name for t in registry.get_all_tools()] == ["a", "b"]
        assert "a" in registry
        assert registry.get_tool("missing") is None
        assert len(registry) == 2


class TestToolResult:
    def test_text(self):
        assert ToolResult.ok("out").text == "out"
        assert ToolResult.failure("bad").text == "bad"

    def test_destructive_tools_require_confirmation(self):
        assert StaticTool("rm", destructive=True).requires_confirmation
        assert not StaticTool("ls").requires_confirmation


class TestPermissionManagers:
    """Tests for permission decisions."""

    @pytest.mark.asyncio
    async def test_static_overrides(self):
        manager = StaticPermissionManager(PermissionDecision.DENY, {"echo": PermissionDecision.ALLOW})
        assert await manager.check("echo", "mcp_host_call", {}) == PermissionDecision.ALLOW
        assert await manager.check("other", "mcp_host_call", {}) == PermissionDecision.DENY

    @pytest.mark.asyncio
    async def test_callback(self):
        seen = []

        async def approve(tool, action, context):
            seen.append((tool, action, context))
            return tool == "echo"

        manager = CallbackPermissionManager(approve)

        assert await manager.check("echo", "mcp_host_call", {"text": "x"}) == PermissionDecision.ALLOW
        assert await manager.check("rm", "mcp_host_call", {}) == PermissionDecision.DENY
        assert seen[0] == ("echo", "mcp_host_call", {"text": "x"})

    @pytest.mark.asyncio
    async def test_failing_callback_denies(self):
        async def broken(tool, action, context):
            raise RuntimeError("prompt closed")

        manager = CallbackPermissionManager(broken)
        assert await manager.check("echo", "mcp_host_call", {}) == PermissionDecision.DENY
