"""Tool abstractions.

A tool is a named, schema-described unit of work. The pipeline only relies on
the small ``Tool`` protocol; ``BaseTool`` is the convenient way to write one
with a pydantic parameter model.

Example:
    >>> class RegionParams(BaseModel):
    ...     region: str = Field(..., description="Region id, e.g. us-east")
    ...
    >>> class RegionTool(BaseTool[RegionParams]):
    ...     metadata = ToolMetadata(
    ...         name="linode_region_get",
    ...         description="Get a single Linode region",
    ...         category="compute",
    ...     )
    ...     params_schema = RegionParams
    ...
    ...     async def _run(self, params: RegionParams, ctx: ExecutionContext) -> object:
    ...         return {"id": params.region}
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Annotated, ClassVar, Generic, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cloudmcp.foundation.errors import ErrorCode, JsonDict, ToolException

if TYPE_CHECKING:
    from cloudmcp.foundation.context import ExecutionContext


class ToolMetadata(BaseModel):
    """Descriptor for a tool: what the LLM sees in ``tools/list``."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=128, pattern=r"^[a-z][a-z0-9_]*$")]
    description: Annotated[str, Field(min_length=1)]
    category: str = "general"


class EmptyParams(BaseModel):
    """Default parameter schema for tools with no inputs."""

    model_config = ConfigDict(extra="ignore")


TParams = TypeVar("TParams", bound=BaseModel)


@runtime_checkable
class Tool(Protocol):
    """What the registry and the middleware chain need from a tool."""

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def input_schema(self) -> JsonDict: ...

    def validate(self, params: JsonDict) -> None: ...

    async def execute(self, params: JsonDict, ctx: ExecutionContext) -> object: ...


class BaseTool(ABC, Generic[TParams]):
    """Abstract base class for tools with a pydantic parameter model.

    Subclasses must:
    - Define ``metadata`` class variable with ToolMetadata
    - Define ``params_schema`` class variable with the pydantic model type
    - Implement ``async _run(params, ctx)``

    ``validate`` raises ``ToolException`` with ``PARAM_VALIDATION`` and never
    touches the network; ``execute`` re-parses the raw arguments so it can be
    called without a prior ``validate``.
    """

    metadata: ClassVar[ToolMetadata]
    params_schema: ClassVar[type[BaseModel]] = EmptyParams

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def description(self) -> str:
        return self.metadata.description

    @property
    def category(self) -> str:
        return self.metadata.category

    @property
    def input_schema(self) -> JsonDict:
        return self.params_schema.model_json_schema()

    def parse(self, params: JsonDict) -> TParams:
        """Validate raw arguments into the parameter model."""
        try:
            return self.params_schema.model_validate(params or {})  # type: ignore[return-value]
        except ValidationError as e:
            raise ToolException.create(
                self.name, f"tool validation failed: {_format_validation_error(e)}",
                ErrorCode.PARAM_VALIDATION, recoverable=False,
            ) from e

    def validate(self, params: JsonDict) -> None:
        self.parse(params)

    async def execute(self, params: JsonDict, ctx: ExecutionContext) -> object:
        return await self._run(self.parse(params), ctx)

    @abstractmethod
    async def _run(self, params: TParams, ctx: ExecutionContext) -> object:
        """Tool body. Raise ToolException for expected failures."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def _format_validation_error(exc: ValidationError) -> str:
    """Compact one-line rendering of pydantic errors."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "params"
        parts.append(f"{loc}: {err['msg'].lower()}")
    return "; ".join(parts)
