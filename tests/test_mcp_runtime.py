import asyncio
from unittest.mock import MagicMock, patch

import pytest

from experience_mcp.mcp_runtime import MCPServer, ToolResult, ToolSpec, _is_awaitable


class FakeFastToolResult:
    def __init__(self, content, structured_content):
        self.content = content
        self.structured_content = structured_content


def test_mcp_server_delegates_to_fastmcp():
    with patch("experience_mcp.mcp_runtime.FastMCP") as mock_fastmcp:
        server = MCPServer("experience-mcp", "0.1.0", "instructions")
        server.run()

    mock_fastmcp.assert_called_once_with(
        name="experience-mcp", version="0.1.0", instructions="instructions"
    )
    mock_fastmcp.return_value.run.assert_called_once()
    assert server.tool_names == []


def test_add_tool_filters_none_and_sets_input_schema():
    captured = {"handler": None}
    received = {}

    class FakeTool:
        model_fields = {"parameters": object()}

    fake_tool = FakeTool()

    def _from_function(handler, **kwargs):
        captured["handler"] = handler
        captured["kwargs"] = kwargs
        return fake_tool

    async def _handler(payload):
        received.update(payload)
        return ToolResult(
            content=[{"type": "text", "text": "ok"}],
            structured_content={"ok": True},
        )

    schema = {"type": "object", "properties": {"mode": {}, "workItemId": {}}}
    with patch("experience_mcp.mcp_runtime.FastMCP") as mock_fastmcp:
        with patch("experience_mcp.mcp_runtime.FunctionTool") as mock_function_tool:
            with patch("experience_mcp.mcp_runtime.FastToolResult", FakeFastToolResult):
                mock_function_tool.from_function.side_effect = _from_function
                server = MCPServer("experience-mcp", "0.1.0", "instructions")
                server.add_tool(
                    ToolSpec(
                        name="experience_create",
                        description="desc",
                        input_schema=schema,
                        handler=_handler,
                    )
                )
                result = asyncio.run(captured["handler"](mode="preview", workItemId=None))

    assert received == {"mode": "preview"}
    assert result.structured_content == {"ok": True}
    assert captured["kwargs"]["name"] == "experience_create"
    assert fake_tool.parameters == schema
    assert server.tool_names == ["experience_create"]
    mock_fastmcp.return_value.add_tool.assert_called_once_with(fake_tool)


def test_sync_handler_must_return_tool_result():
    captured = {}

    def _from_function(handler, **kwargs):
        captured["handler"] = handler
        return MagicMock()

    with patch("experience_mcp.mcp_runtime.FastMCP"):
        with patch("experience_mcp.mcp_runtime.FunctionTool") as mock_function_tool:
            mock_function_tool.from_function.side_effect = _from_function
            server = MCPServer("experience-mcp", "0.1.0", "instructions")
            server.add_tool(ToolSpec("bad", "desc", {"properties": {}}, lambda payload: "nope"))

    with pytest.raises(TypeError, match="ToolResult"):
        asyncio.run(captured["handler"]())


def test_is_awaitable():
    async def _coro():
        return None

    coro = _coro()
    assert _is_awaitable(coro)
    coro.close()
    assert not _is_awaitable("value")
