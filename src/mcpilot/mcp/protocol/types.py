"""Typed views over MCP payloads: content blocks, descriptors and results."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from mcpilot.lib import oj

logger = logging.getLogger(__name__)

DEFAULT_INPUT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass(frozen=True)
class TextContent:
    text: str
    type: str = field(default="text", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImageContent:
    data: str
    mime_type: str = "image/png"
    type: str = field(default="image", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "image", "data": self.data, "mimeType": self.mime_type}


@dataclass(frozen=True)
class ResourceContent:
    """Embedded resource block. ``text`` is None when only a reference was sent."""

    uri: str
    mime_type: str | None = None
    text: str | None = None
    blob: str | None = None
    type: str = field(default="resource", init=False)

    def to_dict(self) -> dict[str, Any]:
        resource: dict[str, Any] = {"uri": self.uri}
        if self.mime_type:
            resource["mimeType"] = self.mime_type
        if self.text is not None:
            resource["text"] = self.text
        if self.blob is not None:
            resource["blob"] = self.blob
        return {"type": "resource", "resource": resource}


Content = TextContent | ImageContent | ResourceContent


def parse_content(data: dict[str, Any]) -> Content | None:
    """
    Decode one content block.

    ``resource_link`` blocks are treated as resources without inline text.
    Unknown block types return None and are skipped by callers.
    """
    if not isinstance(data, dict):
        return None
    match data.get("type"):
        case "text":
            return TextContent(text=str(data.get("text") or ""))
        case "image":
            return ImageContent(
                data=str(data.get("data") or ""),
                mime_type=str(data.get("mimeType") or "image"),
            )
        case "resource":
            resource = data.get("resource")
            if not isinstance(resource, dict):
                resource = data
            return ResourceContent(
                uri=str(resource.get("uri") or ""),
                mime_type=resource.get("mimeType"),
                text=resource.get("text"),
                blob=resource.get("blob"),
            )
        case "resource_link":
            return ResourceContent(uri=str(data.get("uri") or ""), mime_type=data.get("mimeType"))
        case other:
            logger.debug(f"Skipping unsupported content block type: {other}")
            return None


def parse_contents(items: Any) -> list[Content]:
    if not isinstance(items, list):
        return []
    parsed = (parse_content(item) for item in items)
    return [item for item in parsed if item is not None]


@dataclass(frozen=True)
class ToolDescriptor:
    """A remote tool as advertised by ``tools/list``."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_INPUT_SCHEMA))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolDescriptor:
        schema = data.get("inputSchema")
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            input_schema=schema if isinstance(schema, dict) else dict(DEFAULT_INPUT_SCHEMA),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass(frozen=True)
class ResourceDescriptor:
    uri: str
    name: str
    description: str | None = None
    mime_type: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceDescriptor:
        return cls(
            uri=data["uri"],
            name=data.get("name") or data["uri"],
            description=data.get("description"),
            mime_type=data.get("mimeType"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"uri": self.uri, "name": self.name}
        if self.description:
            out["description"] = self.description
        if self.mime_type:
            out["mimeType"] = self.mime_type
        return out


@dataclass(frozen=True)
class PromptArgument:
    name: str
    description: str | None = None
    required: bool = False


@dataclass(frozen=True)
class PromptDescriptor:
    name: str
    description: str | None = None
    arguments: tuple[PromptArgument, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptDescriptor:
        args = tuple(
            PromptArgument(
                name=arg["name"],
                description=arg.get("description"),
                required=bool(arg.get("required", False)),
            )
            for arg in data.get("arguments") or []
            if isinstance(arg, dict) and arg.get("name")
        )
        return cls(name=data["name"], description=data.get("description"), arguments=args)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.description:
            out["description"] = self.description
        if self.arguments:
            out["arguments"] = [
                {"name": a.name, "description": a.description, "required": a.required}
                for a in self.arguments
            ]
        return out


@dataclass
class ToolCallResult:
    """Result of ``tools/call``."""

    content: list[Content] = field(default_factory=list)
    is_error: bool = False
    structured_content: Any = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallResult:
        content = parse_contents(data.get("content"))
        structured = data.get("structuredContent")
        # Servers that only return structured output still produce readable text
        if not content and structured is not None:
            content = [TextContent(text=oj.dumps(structured))]
        return cls(
            content=content,
            is_error=bool(data.get("isError", False)),
            structured_content=structured,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "content": [block.to_dict() for block in self.content],
            "isError": self.is_error,
        }
        if self.structured_content is not None:
            out["structuredContent"] = self.structured_content
        return out

    @classmethod
    def error(cls, message: str) -> ToolCallResult:
        return cls(content=[TextContent(text=message)], is_error=True)

    @property
    def first_text(self) -> str | None:
        for block in self.content:
            if isinstance(block, TextContent) and block.text.strip():
                return block.text
        return None


@dataclass
class ResourceReadResult:
    """Result of ``resources/read``."""

    contents: list[ResourceContent] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceReadResult:
        contents = []
        for item in data.get("contents") or []:
            if not isinstance(item, dict):
                continue
            contents.append(
                ResourceContent(
                    uri=str(item.get("uri") or ""),
                    mime_type=item.get("mimeType"),
                    text=item.get("text"),
                    blob=item.get("blob"),
                )
            )
        return cls(contents=contents)

    def to_dict(self) -> dict[str, Any]:
        return {"contents": [c.to_dict()["resource"] for c in self.contents]}

    @classmethod
    def text(cls, uri: str, text: str, mime_type: str = "text/plain") -> ResourceReadResult:
        return cls(contents=[ResourceContent(uri=uri, mime_type=mime_type, text=text)])

    @property
    def first_text(self) -> str | None:
        for item in self.contents:
            if item.text is not None and item.text.strip():
                return item.text
        return None


@dataclass
class PromptMessage:
    role: str
    content: Content

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content.to_dict()}


@dataclass
class PromptResult:
    """Result of ``prompts/get``."""

    messages: list[PromptMessage] = field(default_factory=list)
    description: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptResult:
        messages = []
        for item in data.get("messages") or []:
            if not isinstance(item, dict):
                continue
            content = parse_content(item.get("content") or {})
            if content is not None:
                messages.append(PromptMessage(role=item.get("role", "user"), content=content))
        return cls(messages=messages, description=data.get("description"))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"messages": [m.to_dict() for m in self.messages]}
        if self.description:
            out["description"] = self.description
        return out
