"""Tests for ToolRegistry — registration, lookup, schemas, argument validation."""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from chain_agent.errors import DuplicateToolError, InvalidToolArgs, ToolNotFound
from chain_agent.tools.registry import ToolDef, ToolRegistry, check_schema


# -- helpers ----------------------------------------------------------------

class EchoInput(BaseModel):
    msg: str


async def _echo_handler(inp: EchoInput, context) -> dict:
    return {"echo": inp.msg}


def _make_echo_tool(**overrides) -> ToolDef:
    defaults = dict(
        name="echo",
        description="Echoes input",
        input_model=EchoInput,
        handler=_echo_handler,
    )
    defaults.update(overrides)
    return ToolDef(**defaults)


REMOTE_SCHEMA = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": ["a", "b"]},
        "count": {"type": "integer"},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["action"],
}


# -- tests ------------------------------------------------------------------

class TestRegistration:
    def test_register_and_list_in_order(self):
        registry = ToolRegistry()
        registry.register(_make_echo_tool(name="first"))
        registry.register(_make_echo_tool(name="second"))
        assert [t.name for t in registry.list()] == ["first", "second"]
        assert "first" in registry
        assert len(registry) == 2

    def test_duplicate_name_fails_fast(self):
        registry = ToolRegistry()
        registry.register(_make_echo_tool())
        with pytest.raises(DuplicateToolError, match="already registered"):
            registry.register(_make_echo_tool(description="other"))

    def test_frozen_registry_rejects_registration(self):
        registry = ToolRegistry()
        registry.freeze()
        assert registry.frozen
        with pytest.raises(RuntimeError, match="frozen"):
            registry.register(_make_echo_tool())

    def test_resolve_unknown_tool_raises(self):
        registry = ToolRegistry()
        with pytest.raises(ToolNotFound, match="not found"):
            registry.resolve("nonexistent")


class TestOpenAISchemas:
    def test_local_tool_schema_from_model(self):
        registry = ToolRegistry()
        registry.register(_make_echo_tool())
        [schema] = registry.openai_schemas()
        assert schema["type"] == "function"
        assert schema["function"]["name"] == "echo"
        assert "msg" in schema["function"]["parameters"]["properties"]

    def test_remote_tool_schema_passed_through(self):
        registry = ToolRegistry()
        registry.register(ToolDef(name="remote", description="r", input_schema=REMOTE_SCHEMA, provider="mcp"))
        [schema] = registry.openai_schemas()
        assert schema["function"]["parameters"] is REMOTE_SCHEMA

    def test_builtins_are_all_exposed(self, tool_registry):
        names = {s["function"]["name"] for s in tool_registry.openai_schemas()}
        assert {
            "echo", "list_networks", "get_wallet_info", "switch_network", "query_blockchain",
            "get_transaction_status", "build_transaction", "broadcast_transaction", "get_current_network",
        } == names


class TestValidation:
    def test_model_validation_returns_instance(self):
        registry = ToolRegistry()
        tool = _make_echo_tool()
        registry.register(tool)
        result = registry.validate(tool, {"msg": "hi"})
        assert isinstance(result, EchoInput)
        assert result.msg == "hi"

    def test_model_validation_failure(self):
        tool = _make_echo_tool()
        with pytest.raises(InvalidToolArgs, match="msg"):
            ToolRegistry().validate(tool, {})

    def test_non_object_arguments_rejected(self):
        with pytest.raises(InvalidToolArgs):
            ToolRegistry().validate(_make_echo_tool(), ["not", "a", "dict"])

    def test_schema_validation_accepts_valid(self):
        tool = ToolDef(name="remote", description="r", input_schema=REMOTE_SCHEMA, provider="mcp")
        args = {"action": "a", "count": 3, "tags": ["x"]}
        assert ToolRegistry().validate(tool, args) == args

    @pytest.mark.parametrize(
        "args, message",
        [
            ({}, "Missing required field: action"),
            ({"action": "z"}, "not one of"),
            ({"action": "a", "count": "3"}, "expected integer"),
            ({"action": "a", "count": True}, "expected integer"),
            ({"action": "a", "tags": [1]}, r"tags\[0\]"),
        ],
    )
    def test_schema_validation_rejects_invalid(self, args, message):
        with pytest.raises(InvalidToolArgs, match=message):
            check_schema(args, REMOTE_SCHEMA)
