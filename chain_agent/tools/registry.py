"""Tool registry — descriptors, OpenAI schemas, and argument validation.

Execution lives in :mod:`chain_agent.tools.executor`; the registry only knows
*what* tools exist and what arguments they accept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from chain_agent.engine.models import AgentContext
from chain_agent.errors import DuplicateToolError, InvalidToolArgs, ToolNotFound

logger = logging.getLogger(__name__)

LOCAL_PROVIDER = "local"

Handler = Callable[[Any, AgentContext], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDef:
    """Registration record for a single tool.

    Local tools carry an ``input_model`` and a ``handler``; remote tools
    discovered from a provider carry a raw ``input_schema`` and are executed
    by that provider's connection.
    """

    name: str
    description: str
    input_model: type[BaseModel] | None = None
    input_schema: dict[str, Any] | None = None
    handler: Handler | None = None
    provider: str = LOCAL_PROVIDER
    requires_wallet: bool = False
    timeout: float | None = None

    def schema(self) -> dict[str, Any]:
        if self.input_schema is not None:
            return self.input_schema
        if self.input_model is not None:
            return self.input_model.model_json_schema()
        return {"type": "object", "properties": {}}


class ToolRegistry:
    """Catalog of tools. Populated at startup, then frozen."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}
        self._frozen = False

    # -- registration -------------------------------------------------------

    def register(self, tool_def: ToolDef) -> None:
        if self._frozen:
            raise RuntimeError(f"Registry is frozen; cannot register '{tool_def.name}'")
        if tool_def.name in self._tools:
            raise DuplicateToolError(tool_def.name)
        self._tools[tool_def.name] = tool_def
        logger.info("Registered tool %s (provider=%s)", tool_def.name, tool_def.provider)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- lookup -------------------------------------------------------------

    def list(self) -> list[ToolDef]:
        return list(self._tools.values())

    def resolve(self, name: str) -> ToolDef:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    # -- OpenAI function-calling schemas ------------------------------------

    def openai_schemas(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.schema(),
                },
            }
            for tool in self._tools.values()
        ]

    # -- validation ---------------------------------------------------------

    def validate(self, tool: ToolDef, arguments: Any) -> Any:
        """Return the arguments in the form the tool's transport expects.

        A pydantic model instance for local tools with an ``input_model``,
        otherwise the (checked) dict itself.
        """
        if not isinstance(arguments, dict):
            raise InvalidToolArgs("Expected object arguments")
        if tool.input_model is not None:
            try:
                return tool.input_model.model_validate(arguments)
            except ValidationError as exc:
                raise InvalidToolArgs(_summarize(exc)) from exc
        check_schema(arguments, tool.schema())
        return arguments


# ---------------------------------------------------------------------------
# Structural JSON-schema check for remote tools
# ---------------------------------------------------------------------------

_JSON_TYPES: dict[str, type | tuple[type, ...]] = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": list,
    "object": dict,
    "null": type(None),
}


def _matches(value: Any, expected: str) -> bool:
    py_type = _JSON_TYPES.get(expected)
    if py_type is None:
        return True
    if expected in ("integer", "number") and isinstance(value, bool):
        return False
    return isinstance(value, py_type)


def check_schema(value: Any, schema: dict[str, Any], path: str = "arguments") -> None:
    """Subset of JSON Schema: type, enum, required, properties, items."""
    expected = schema.get("type")
    if expected is not None:
        options = expected if isinstance(expected, list) else [expected]
        if not any(_matches(value, t) for t in options):
            raise InvalidToolArgs(f"{path}: expected {expected}, got {type(value).__name__}")

    if "enum" in schema and value not in schema["enum"]:
        raise InvalidToolArgs(f"{path}: {value!r} is not one of {schema['enum']}")

    if isinstance(value, dict):
        for field_name in schema.get("required", []):
            if field_name not in value:
                raise InvalidToolArgs(f"Missing required field: {field_name}")
        for key, sub in schema.get("properties", {}).items():
            if key in value and isinstance(sub, dict):
                check_schema(value[key], sub, f"{path}.{key}")

    if isinstance(value, list) and isinstance(schema.get("items"), dict):
        for i, item in enumerate(value):
            check_schema(item, schema["items"], f"{path}[{i}]")


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "arguments"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)
