"""
Reasoning agent tool wrapper tests.

Run with:
    pytest tests/test_agent_tools.py -v
"""

import pytest

from agentlib.exceptions import ConfigError
from apps.graphs.designer.nodes.agent import load_tool_schema, max_iterations_message, mcp_tool, tools_for_node
from apps.graphs.designer.helpers import is_max_iterations_message

from fakes import fake_transport, make_tool, tool_result


class TestLoadToolSchema:

    @pytest.mark.parametrize("raw", [None, "", "  "])
    def test_blank_is_empty_object(self, raw):
        assert load_tool_schema(raw, "t") == {"type": "object", "properties": {}}

    def test_json_text(self):
        assert load_tool_schema('{"type": "object", "properties": {"q": {}}}', "t")["properties"] == {"q": {}}

    @pytest.mark.parametrize("raw", ["{broken", "[1, 2]"])
    def test_invalid(self, raw):
        with pytest.raises(ConfigError):
            load_tool_schema(raw, "t")


class TestMcpTool:

    @pytest.mark.asyncio
    async def test_proxies_call_over_transport(self):
        transport = fake_transport(tool_result(texts=["sunny"]))
        tool = mcp_tool(make_tool("weather", inputs=["city"]), transport)

        output = await tool.ainvoke({"city": "Oslo"})

        assert output == "sunny"
        transport.call_tool.assert_awaited_once_with("weather", {"city": "Oslo"})

    @pytest.mark.asyncio
    async def test_error_result_is_reported_to_the_agent(self):
        transport = fake_transport(tool_result(texts=["city not found"], is_error=True))
        tool = mcp_tool(make_tool("weather", inputs=["city"]), transport)

        output = await tool.ainvoke({"city": "Atlantis"})

        assert output == "city not found"

    def test_no_transport_means_no_tools(self):
        assert tools_for_node([make_tool("weather")], None) == []


class TestIterationSentinel:

    def test_own_message_is_detected(self):
        assert is_max_iterations_message(max_iterations_message(4).content)

    def test_recursion_reply_is_detected(self):
        assert is_max_iterations_message("Sorry, NEED MORE STEPS TO PROCESS THIS REQUEST.")

    def test_regular_text(self):
        assert not is_max_iterations_message("All done.")
        assert not is_max_iterations_message("")
