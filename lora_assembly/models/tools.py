"""Tool definitions and callback signatures registered on a runner."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field


class Function(BaseModel):
    """A callable tool exposed to the model."""

    name: str
    description: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class Tool(BaseModel):
    """Tool definition in OpenAI function-calling format."""

    type: Literal["function"] = "function"
    function: Function


class CalledFunction(BaseModel):
    """A tool invocation emitted by the model."""

    name: str
    arguments: str = "{}"


class SearchFunctionParameters(BaseModel):
    """Arguments of a web search request emitted by the model."""

    query: str


class SearchResult(BaseModel):
    """One result returned by a search callback."""

    title: str
    description: str
    url: str
    content: str


SearchCallback = Callable[[SearchFunctionParameters], list[SearchResult]]
ToolCallback = Callable[[CalledFunction], str]


@dataclass(frozen=True)
class ToolCallbackWithTool:
    """A tool callback bound to the tool definition it serves."""

    callback: ToolCallback
    tool: Tool
