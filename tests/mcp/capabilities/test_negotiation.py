"""Tests for capability models and protocol version candidates."""

from mcpilot.mcp.capabilities import (
    HOST_SERVER_CAPABILITIES,
    PROTOCOL_VERSION,
    SUPPORTED_VERSIONS,
    CapabilityNegotiator,
    ClientCapabilities,
    ServerCapabilities,
    candidate_versions,
)


class TestCandidateVersions:
    """Tests for the order versions are tried in."""

    def test_default_order(self):
        assert candidate_versions(PROTOCOL_VERSION) == SUPPORTED_VERSIONS

    def test_preferred_first_without_duplicates(self):
        assert candidate_versions("2024-11-05") == ["2024-11-05", "2025-11-25", "2025-06-18", "2025-03-26"]

    def test_unknown_preferred_is_still_tried(self):
        versions = candidate_versions("2026-01-01", ["2025-06-18"])
        assert versions == ["2026-01-01", "2025-06-18"]

    def test_empty_preferred_is_skipped(self):
        assert candidate_versions("", ["2025-06-18"]) == ["2025-06-18"]


class TestServerCapabilities:
    """Tests for parsing server capabilities."""

    def test_empty(self):
        caps = ServerCapabilities.from_dict(None)
        assert caps.get_available_features() == []
        assert not caps.supports_tools()

    def test_sections(self):
        caps = ServerCapabilities.from_dict(
            {"tools": {"listChanged": True}, "resources": {"subscribe": True}, "logging": {}}
        )
        assert caps.tools.list_changed
        assert caps.resources.subscribe
        assert not caps.resources.list_changed
        assert caps.get_available_features() == ["tools", "resources", "logging"]

    def test_host_advertisement(self):
        assert HOST_SERVER_CAPABILITIES.to_dict() == {
            "tools": {"listChanged": True},
            "resources": {"subscribe": False, "listChanged": True},
            "prompts": {"listChanged": True},
            "logging": {},
        }


class TestClientCapabilities:
    """Tests for client capability serialization."""

    def test_empty_by_default(self):
        assert ClientCapabilities().to_dict() == {}

    def test_declared_roots_and_sampling(self):
        caps = ClientCapabilities.from_dict({"roots": {"listChanged": False}, "sampling": {}})
        assert caps.to_dict() == {"roots": {"listChanged": False}, "sampling": {}}


class TestCapabilityNegotiator:
    """Tests for negotiator defaults."""

    def test_each_negotiator_owns_its_capabilities(self):
        first = CapabilityNegotiator(client=None)
        second = CapabilityNegotiator(client=None)

        first.client_capabilities.sampling = True

        assert first.client_capabilities is not second.client_capabilities
        assert second.client_capabilities.to_dict() == {}
