"""Resources and prompts served by the inbound host."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Any, Callable
from urllib.parse import parse_qs, urlsplit

from mcpilot.lib import oj
from mcpilot.mcp.host.session import HostSession
from mcpilot.mcp.protocol.types import (
    PromptArgument,
    PromptDescriptor,
    PromptMessage,
    PromptResult,
    ResourceDescriptor,
    ResourceReadResult,
    TextContent,
)

logger = logging.getLogger(__name__)

URI_SCHEME = "mcpilot://"
WORKSPACE_TREE_URI = "mcpilot://workspace/tree"
WORKSPACE_FILE_URI = "mcpilot://workspace/file"
STATE_URI = "mcpilot://state/session"
MAX_TREE_ENTRIES = 500


class ResourceProvider(ABC):
    """Source of host resources. ``read_resource`` returns None for URIs it does not own."""

    @abstractmethod
    def list_resources(self, session: HostSession) -> list[ResourceDescriptor]: ...

    @abstractmethod
    def read_resource(self, uri: str, session: HostSession) -> ResourceReadResult | None: ...


class PromptProvider(ABC):
    """Source of host prompts. ``get_prompt`` returns None for names it does not own."""

    @abstractmethod
    def list_prompts(self) -> list[PromptDescriptor]: ...

    @abstractmethod
    def get_prompt(self, name: str, arguments: dict[str, Any]) -> PromptResult | None: ...


class WorkspaceResourceProvider(ResourceProvider):
    """
    Read access to a workspace directory.

    ``mcpilot://workspace/tree`` lists the top-level entries and
    ``mcpilot://workspace/file?path=<relative path>`` returns a file's
    text. Paths resolving outside the root are refused. Problems are
    reported as the resource text rather than as protocol errors.
    """

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    def list_resources(self, session: HostSession) -> list[ResourceDescriptor]:
        return [
            ResourceDescriptor(
                uri=WORKSPACE_TREE_URI,
                name="Workspace Tree",
                description="Top-level workspace entries",
                mime_type="text/plain",
            ),
            ResourceDescriptor(
                uri=f"{WORKSPACE_FILE_URI}?path=<workspace-relative-path>",
                name="Workspace File",
                description="Read a file from workspace by query parameter 'path'",
                mime_type="text/plain",
            ),
        ]

    def read_resource(self, uri: str, session: HostSession) -> ResourceReadResult | None:
        if uri == WORKSPACE_TREE_URI:
            return ResourceReadResult.text(uri, self._tree())
        if uri.startswith(WORKSPACE_FILE_URI):
            return ResourceReadResult.text(uri, self._read_file(uri))
        return None

    def _tree(self) -> str:
        try:
            names = sorted(entry.name for entry in self.root.iterdir())
        except OSError as e:
            return f"Failed to list workspace tree: {e}"
        return "\n".join(names[:MAX_TREE_ENTRIES])

    def _read_file(self, uri: str) -> str:
        values = parse_qs(urlsplit(uri).query).get("path")
        path_arg = values[0] if values else None
        if not path_arg or not path_arg.strip():
            return "Missing 'path' query argument"

        target = (self.root / path_arg).resolve()
        if not target.is_relative_to(self.root):
            return "Path traversal is not allowed"
        if not target.is_file():
            return f"File not found: {target}"
        try:
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return f"Failed to read file: {e}"


StateSnapshot = Callable[[HostSession], dict[str, Any]]


class StateResourceProvider(ResourceProvider):
    """``mcpilot://state/session``: runtime state as JSON."""

    def __init__(self, snapshot: StateSnapshot):
        self._snapshot = snapshot

    def list_resources(self, session: HostSession) -> list[ResourceDescriptor]:
        return [
            ResourceDescriptor(
                uri=STATE_URI,
                name="mcpilot Session State",
                description="Current runtime state",
                mime_type="application/json",
            )
        ]

    def read_resource(self, uri: str, session: HostSession) -> ResourceReadResult | None:
        if uri != STATE_URI:
            return None
        payload = {"sessionId": session.session_id, **self._snapshot(session)}
        return ResourceReadResult.text(uri, oj.dumps(payload), mime_type="application/json")


@dataclass(frozen=True)
class PromptTemplate:
    """A named system prompt. ``$name`` placeholders are filled from arguments."""

    name: str
    description: str
    text: str
    arguments: tuple[PromptArgument, ...] = ()
    defaults: dict[str, str] = field(default_factory=dict)


DEFAULT_TEMPLATES = (
    PromptTemplate(
        name="build",
        description="Build-mode agent system prompt",
        text=(
            "You are a coding agent working in the user's workspace. Make the requested "
            "change end to end: read the relevant code, edit it, and verify the result "
            "with the available tools. Keep changes minimal and consistent with the "
            "surrounding code."
        ),
    ),
    PromptTemplate(
        name="plan",
        description="Plan-mode agent system prompt",
        text=(
            "You are a planning agent. Investigate the workspace with read-only tools and "
            "produce a step-by-step implementation plan. Do not modify files."
        ),
    ),
    PromptTemplate(
        name="explore",
        description="Explore-mode agent system prompt",
        text=(
            "You are an exploration agent. Answer questions about the codebase by reading "
            "and searching files. Cite the files you relied on. Do not modify files."
        ),
    ),
    PromptTemplate(
        name="subagent",
        description="Subagent system prompt",
        text=(
            "You are a subagent running with profile '$profile'.\n"
            "Task: $description\n"
            "Read-only: $readOnly"
        ),
        arguments=(
            PromptArgument(name="profile", description="Agent profile name"),
            PromptArgument(name="description", description="Task description"),
            PromptArgument(name="readOnly", description="Whether the subagent may modify files"),
        ),
        defaults={"profile": "mcp", "description": "MCP prompt request", "readOnly": "true"},
    ),
)


class PromptTemplateProvider(PromptProvider):
    def __init__(self, templates: tuple[PromptTemplate, ...] | list[PromptTemplate] = DEFAULT_TEMPLATES):
        self._templates = {t.name: t for t in templates}

    def list_prompts(self) -> list[PromptDescriptor]:
        return [
            PromptDescriptor(name=t.name, description=t.description, arguments=t.arguments)
            for t in self._templates.values()
        ]

    def get_prompt(self, name: str, arguments: dict[str, Any]) -> PromptResult | None:
        template = self._templates.get(name)
        if template is None:
            return None
        values = {**template.defaults, **{k: str(v) for k, v in (arguments or {}).items() if v is not None}}
        text = Template(template.text).safe_substitute(values)
        return PromptResult(
            messages=[PromptMessage(role="system", content=TextContent(text=text))],
            description=f"mcpilot prompt template: {name}",
        )
