# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import time
import logging

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, ClassVar, Iterable, Optional
from pydantic import BaseModel, PrivateAttr, ValidationError

from ..types.errors import HandlerExecutionError, InvalidArguments, UnknownTool
from ..types.llm_types import tool_definition_to_openai
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class ToolContext(BaseModel):
    """Per-invocation context handed to every tool handler.

    ``registry`` is the snapshot the calling loop runs with, so that tools
    which build child loops derive their tool sets from it.
    """

    conversation_id: Optional[str] = None
    model: Optional[str] = None
    depth: int = 0  # 0 for the top-level loop, 1 inside a subagent
    registry: Optional["ToolRegistry"] = None

    class Config:
        arbitrary_types_allowed = True

    @property
    def agent_id(self) -> str:
        """Stable namespace for per-conversation memory"""
        if self.conversation_id is None:
            return "default"
        return f"chat-{self.conversation_id}"


Handler = Callable[[ToolContext, Any], Awaitable[str]]


class ToolDefinition(BaseModel):
    """
    An immutable tool entry in a registry snapshot.

    ``handler`` receives the context and the validated arguments: an instance
    of ``args_model`` when one is set, else the decoded argument dict.
    """

    name: str
    description: str
    parameters: dict[str, Any]
    handler: Handler
    args_model: Optional[type[BaseModel]] = None

    class Config:
        arbitrary_types_allowed = True
        frozen = True

    def to_openai(self) -> dict[str, Any]:
        return tool_definition_to_openai(self.name, self.description, self.parameters)

    def validate_args(self, args: dict[str, Any]) -> Any:
        if self.args_model is not None:
            try:
                return self.args_model.model_validate(args)
            except ValidationError as e:
                reasons = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                    for err in e.errors()
                )
                raise InvalidArguments(self.name, reasons) from e

        missing = [
            key for key in self.parameters.get("required", []) if args.get(key) in (None, "")
        ]
        if missing:
            raise InvalidArguments(self.name, f"missing required field(s): {', '.join(missing)}")
        return args


def _strip_titles(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {k: _strip_titles(v) for k, v in schema.items() if k != "title"}
    if isinstance(schema, list):
        return [_strip_titles(v) for v in schema]
    return schema


class BaseTool(BaseModel, ABC):
    """
    Abstract base class for typed tools.

    The pydantic fields of a subclass are the tool's arguments, so the schema
    advertised to the oracle and the validation applied before ``run`` come
    from the same declaration. Environment a tool needs (a workspace root, a
    collaborator) is bound per registry through ``definition(**bindings)``
    and lands on the matching private attribute.
    """

    TOOL_NAME: ClassVar[str]
    TOOL_DESCRIPTION: ClassVar[str]

    _context: ToolContext = PrivateAttr(default_factory=ToolContext)

    class Config:
        extra = "forbid"

    @abstractmethod
    async def run(self) -> ToolResult:
        """Execute the tool's functionality"""
        pass

    @classmethod
    def parameters_schema(cls) -> dict[str, Any]:
        schema = _strip_titles(cls.model_json_schema())
        schema.setdefault("properties", {})
        schema.pop("additionalProperties", None)
        return schema

    @classmethod
    def definition(cls, **bindings) -> ToolDefinition:
        """Build a registry entry for this tool with the given bindings."""

        async def handler(context: ToolContext, tool: "BaseTool") -> str:
            tool._context = context
            for key, value in bindings.items():
                setattr(tool, f"_{key}", value)

            start_time = time.time()
            result = await tool.run()
            result.duration = time.time() - start_time
            return result.to_text()

        return ToolDefinition(
            name=cls.TOOL_NAME,
            description=cls.TOOL_DESCRIPTION.strip(),
            parameters=cls.parameters_schema(),
            handler=handler,
            args_model=cls,
        )


class ToolRegistry:
    """
    A flat, ordered catalog of tool definitions.

    A registry is assembled with ``define``/``add`` and then treated as an
    immutable snapshot: the derivation helpers (``exclude``, ``extend``)
    return new registries and never touch the original.
    """

    def __init__(self, definitions: Iterable[ToolDefinition] = ()):
        self._tools: dict[str, ToolDefinition] = {}
        for definition in definitions:
            self.add(definition)

    def add(self, definition: ToolDefinition) -> "ToolRegistry":
        if definition.name in self._tools:
            raise ValueError(f"Tool {definition.name} is already defined")
        self._tools[definition.name] = definition
        return self

    def define(
        self,
        name: str,
        description: str,
        schema: dict[str, Any],
        handler: Handler,
    ) -> "ToolRegistry":
        return self.add(
            ToolDefinition(name=name, description=description, parameters=schema, handler=handler)
        )

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self):
        return iter(self._tools.values())

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def to_catalog(self) -> list[dict[str, Any]]:
        """Export the oracle-facing function-calling catalog"""
        return [t.to_openai() for t in self._tools.values()]

    def exclude(self, names: Iterable[str]) -> "ToolRegistry":
        dropped = set(names)
        return ToolRegistry(t for t in self._tools.values() if t.name not in dropped)

    def extend(self, definitions: Iterable[ToolDefinition]) -> "ToolRegistry":
        return ToolRegistry([*self._tools.values(), *definitions])

    async def invoke(self, context: ToolContext, name: str, args_json: str | None) -> str:
        """
        Parse, validate and run a tool call. Arguments are parsed before the
        name is looked up.

        Raises:
            InvalidArguments: the arguments are not a JSON object or fail validation
            UnknownTool: no tool with this exact name
            HandlerExecutionError: the handler itself raised
        """
        try:
            args = json.loads(args_json) if args_json and args_json.strip() else {}
        except json.JSONDecodeError as e:
            raise InvalidArguments(name, f"could not parse JSON: {e}") from e
        if not isinstance(args, dict):
            raise InvalidArguments(name, "arguments must be a JSON object")

        definition = self._tools.get(name)
        if definition is None:
            raise UnknownTool(name)

        validated = definition.validate_args(args)
        try:
            return await definition.handler(context, validated)
        except HandlerExecutionError:
            raise
        except Exception as e:
            raise HandlerExecutionError(str(e) or e.__class__.__name__) from e

    async def dispatch(self, context: ToolContext, name: str, args_json: str | None) -> str:
        """Run a tool call, turning every failure into ``Error: ...`` text."""
        try:
            return await self.invoke(context, name, args_json)
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            return f"Error: {e}"


ToolContext.model_rebuild()
