"""Shapes exchanged with the MCP transport.

The transport is an external SDK; the registry only needs to hand it a
definition and an async handler per tool. Results use the MCP ``tools/call``
envelope: a list of text content items plus ``isError``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Literal, Protocol, runtime_checkable

import orjson
from pydantic import BaseModel, ConfigDict, Field

from cloudmcp.foundation.errors import JsonDict


class ToolDefinition(BaseModel):
    """What ``tools/list`` reports for one tool."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str
    input_schema: JsonDict = Field(default_factory=lambda: {"type": "object", "properties": {}},
                                   serialization_alias="inputSchema")


class TextContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolCallResult(BaseModel):
    """``tools/call`` result envelope."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content: list[TextContent]
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def text(cls, text: str) -> ToolCallResult:
        return cls(content=[TextContent(text=text)], is_error=False)

    @classmethod
    def error(cls, text: str) -> ToolCallResult:
        return cls(content=[TextContent(text=text)], is_error=True)

    @property
    def first_text(self) -> str:
        return self.content[0].text if self.content else ""

    def to_wire(self) -> JsonDict:
        return self.model_dump(by_alias=True)


ToolHandler = Callable[[JsonDict], Awaitable[ToolCallResult]]


@runtime_checkable
class Transport(Protocol):
    """Minimal surface of the MCP server SDK."""

    def add_tool(self, definition: ToolDefinition, handler: ToolHandler) -> None: ...

    async def serve_stdio(self) -> None: ...


def render_result(value: object) -> str:
    """Tool return value as envelope text: strings verbatim, everything else as JSON."""
    match value:
        case str():
            return value
        case BaseModel():
            return value.model_dump_json()
        case None:
            return ""
    return orjson.dumps(value, default=str, option=orjson.OPT_NON_STR_KEYS).decode()
