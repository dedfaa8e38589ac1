"""Function-based tools.

Wraps a plain async (or sync) function as a ``BaseTool`` so small tools and
test doubles do not need a class.

Example:
    >>> @tool(name="hello", description="Say hello")
    ... async def hello(name: str = "World") -> str:
    ...     return f"Hello, {name}!"
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from pydantic import BaseModel, create_model

from .base import BaseTool, EmptyParams, ToolMetadata

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext

ToolFunc = Callable[..., object] | Callable[..., Awaitable[object]]


class FunctionTool(BaseTool[BaseModel]):
    """BaseTool implementation around a function.

    Parameters are passed as keyword arguments from the validated model. A
    function that declares a ``ctx`` parameter also receives the
    ExecutionContext.
    """

    def __init__(self, func: ToolFunc, metadata: ToolMetadata, params_schema: type[BaseModel] = EmptyParams) -> None:
        self._func = func
        self._is_async = asyncio.iscoroutinefunction(func)
        self._wants_ctx = "ctx" in inspect.signature(func).parameters
        self.metadata = metadata  # type: ignore[misc]
        self.params_schema = params_schema  # type: ignore[misc]

    async def _run(self, params: BaseModel, ctx: ExecutionContext) -> object:
        kwargs = params.model_dump()
        if self._wants_ctx:
            kwargs["ctx"] = ctx
        if self._is_async:
            return await self._func(**kwargs)  # type: ignore[misc]
        return await asyncio.to_thread(self._func, **kwargs)

    @property
    def func(self) -> ToolFunc:
        return self._func


def _schema_from_signature(func: ToolFunc, name: str) -> type[BaseModel]:
    """Derive a pydantic parameter model from the function signature."""
    fields: dict[str, object] = {}
    for pname, param in inspect.signature(func, eval_str=True).parameters.items():
        if pname == "ctx" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = param.annotation if param.annotation is not inspect.Parameter.empty else object
        default = param.default if param.default is not inspect.Parameter.empty else ...
        fields[pname] = (annotation, default)
    if not fields:
        return EmptyParams
    model_name = "".join(part.title() for part in name.split("_")) + "Params"
    return create_model(model_name, **fields)  # type: ignore[call-overload]


def tool(
    *,
    name: str | None = None,
    description: str | None = None,
    category: str = "general",
    params_schema: type[BaseModel] | None = None,
) -> Callable[[ToolFunc], FunctionTool]:
    """Decorator turning a function into a FunctionTool."""

    def decorator(func: ToolFunc) -> FunctionTool:
        tool_name = name or func.__name__
        desc = description or inspect.getdoc(func) or tool_name
        metadata = ToolMetadata(name=tool_name, description=desc, category=category)
        return FunctionTool(func, metadata, params_schema or _schema_from_signature(func, tool_name))

    return decorator
