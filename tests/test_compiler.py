"""
Graph compiler tests.

Covers client sharing, supervisor wiring rules, structural determinism and
end-to-end invocation of compiled graphs with fake models.

Run with:
    pytest tests/test_compiler.py -v
"""

import asyncio
from unittest.mock import Mock

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from agentlib.config import settings
from agentlib.exceptions import BuildError, ConfigError, NodeTimeoutError, UnreachableEndError
from apps.graphs.designer import compiler as compiler_module
from apps.graphs.designer.compiler import GraphCompiler, with_timeout

from fakes import (
    FakeAgentBuilder, FakeRoutingModel, fake_image_preparer, fake_transport, make_node, make_snapshot, make_tool, tool_result,
)


def _factory(model=None):
    return Mock(side_effect=lambda provider, name: model or FakeListChatModel(responses=["unused"]))


def _compiler(factory=None, agent_builder=None):
    return GraphCompiler(
        client_factory=factory or _factory(),
        agent_builder=agent_builder or FakeAgentBuilder("done"),
        image_preparer=fake_image_preparer,
    )


def _structure(graph):
    drawable = graph.get_graph()
    return sorted(drawable.nodes), sorted((e.source, e.target) for e in drawable.edges)


# ============================================================================
# Model clients
# ============================================================================

class TestModelClients:

    def test_shared_client_for_same_provider_and_model(self):
        factory = _factory()
        snapshot = make_snapshot(
            "first",
            [
                make_node("first", input_key="text", output_key="draft", model=("OPENAI", "gpt-4o")),
                make_node("second", input_key="draft", output_key="answer", model=("OPENAI", "gpt-4o")),
            ],
            [("first", "second"), ("second", "END")],
        )

        _compiler(factory).compile(snapshot)

        factory.assert_called_once_with("openai", "gpt-4o")

    def test_invalid_snapshot_builds_no_clients(self):
        factory = _factory()
        snapshot = make_snapshot("a", [make_node("a"), make_node("b")], [("a", "b")])

        with pytest.raises(UnreachableEndError):
            _compiler(factory).compile(snapshot)

        factory.assert_not_called()

    def test_factory_failure_is_build_error(self):
        factory = Mock(side_effect=RuntimeError("no credentials"))
        snapshot = make_snapshot("a", [make_node("a")], [("a", "END")])
        with pytest.raises(BuildError, match="no credentials"):
            _compiler(factory).compile(snapshot)


# ============================================================================
# Supervisor wiring rules
# ============================================================================

class TestSupervisorRules:

    def _snapshot(self, sup_config, extra_nodes=()):
        return make_snapshot(
            "sup",
            [make_node("sup", "supervisor", sup_config), make_node("a"), make_node("b"), *extra_nodes],
        )

    def test_member_of_two_supervisors(self):
        snapshot = make_snapshot(
            "sup",
            [
                make_node("sup", "supervisor", {"members": ["a"]}),
                make_node("other", "supervisor", {"members": ["a", "b"]}),
                make_node("a"),
                make_node("b"),
            ],
        )
        with pytest.raises(BuildError, match="member of multiple supervisors"):
            _compiler(_factory(FakeRoutingModel())).compile(snapshot)

    def test_unknown_member(self):
        with pytest.raises(BuildError, match="unknown member 'ghost'"):
            _compiler(_factory(FakeRoutingModel())).compile(self._snapshot({"members": ["a", "ghost"]}))

    def test_supervisor_lists_itself(self):
        with pytest.raises(ConfigError, match="cannot list itself"):
            _compiler(_factory(FakeRoutingModel())).compile(self._snapshot({"members": ["sup"]}))

    def test_unreadable_config_fails_at_compile(self):
        # Passes validation only because the supervisor adds no edges; a
        # regular edge gives the entry node its path to END.
        snapshot = make_snapshot(
            "a",
            [make_node("sup", "supervisor", "{not json"), make_node("a")],
            [("a", "END")],
        )
        with pytest.raises(ConfigError, match="invalid config json"):
            _compiler(_factory(FakeRoutingModel())).compile(snapshot)

    def test_explicit_edges_from_supervisor_are_ignored(self):
        snapshot = make_snapshot(
            "sup",
            [make_node("sup", "supervisor", {"members": ["a"]}), make_node("a"), make_node("b")],
            [("sup", "b"), ("b", "END")],
        )
        graph = _compiler(_factory(FakeRoutingModel())).compile(snapshot)
        _, edges = _structure(graph)
        assert ("sup", "b") not in edges
        assert ("a", "sup") in edges


# ============================================================================
# Structure
# ============================================================================

class TestStructure:

    def test_compiling_twice_gives_same_structure(self):
        snapshot = make_snapshot(
            "intake",
            [
                make_node("intake", input_key="text", output_key="brief"),
                make_node("sup", "supervisor", {"members": ["researcher", "writer"]}, input_key="brief", output_key="answer"),
                make_node("researcher"),
                make_node("writer"),
            ],
            [("intake", "sup")],
        )
        compiler = _compiler(_factory(FakeRoutingModel()))
        assert _structure(compiler.compile(snapshot)) == _structure(compiler.compile(snapshot))

    @pytest.mark.asyncio
    async def test_node_key_may_equal_its_output_key(self):
        snapshot = make_snapshot("answer", [make_node("answer", input_key="text", output_key="answer")], [("answer", "END")])
        graph = _compiler(agent_builder=FakeAgentBuilder("hi")).compile(snapshot)

        final_state = await graph.ainvoke({"text": "hello"})

        assert final_state["answer"] == "hi"
        assert final_state["text"] == "hello"


# ============================================================================
# End-to-end invocation
# ============================================================================

class TestInvocation:

    @pytest.mark.asyncio
    async def test_single_worker_graph(self):
        snapshot = make_snapshot(
            "w",
            [make_node("w", input_key="text", output_key="answer")],
            [("w", "END")],
        )
        graph = _compiler(agent_builder=FakeAgentBuilder("Hi there!")).compile(snapshot)

        final_state = await graph.ainvoke({"text": "hello"})

        assert final_state["answer"] == "Hi there!"

    @pytest.mark.asyncio
    async def test_state_schema_append_key(self):
        snapshot = make_snapshot(
            "first",
            [make_node("first", output_key="notes"), make_node("second", output_key="notes")],
            [("first", "second"), ("second", "END")],
            state_schema={"notes": "append"},
        )
        graph = _compiler(agent_builder=FakeAgentBuilder("note")).compile(snapshot, state_keys=["notes"])

        final_state = await graph.ainvoke({"notes": ["seed"]})

        assert final_state["notes"] == ["seed", "note", "note"]

    @pytest.mark.asyncio
    async def test_supervisor_graph_routes_then_finishes(self):
        router = FakeRoutingModel(decisions=["researcher", "FINISH"])

        def factory(provider, name):
            return router if name == "router" else FakeListChatModel(responses=["unused"])

        snapshot = make_snapshot(
            "sup",
            [
                make_node("sup", "supervisor", {"members": ["researcher"]},
                          input_key="question", output_key="answer", model=("openai", "router")),
                make_node("researcher"),
            ],
        )
        graph = _compiler(Mock(side_effect=factory), FakeAgentBuilder("The answer is 42.")).compile(snapshot)

        final_state = await graph.ainvoke({"question": "What is the answer?"})

        assert final_state["answer"] == "The answer is 42."
        assert final_state["__supervisor_iteration"] == 2
        assert [m.content for m in final_state["messages"][1:]] == [
            "[supervisor] routing to: researcher",
            "The answer is 42.",
            "[supervisor] routing to: FINISH",
        ]


class TestTimeout:

    @pytest.mark.asyncio
    async def test_slow_node_times_out(self):
        async def slow(state):
            await asyncio.sleep(1)
            return {}

        wrapped = with_timeout("slow", slow, 0.01)
        with pytest.raises(NodeTimeoutError) as exc_info:
            await wrapped({})
        assert exc_info.value.node_key == "slow"


class TestNodeTimeouts:

    @pytest.fixture
    def applied(self, monkeypatch):
        """Record the timeout the compiler wraps around each node."""
        timeouts = {}

        def recording(node_key, fn, timeout_seconds):
            timeouts[node_key] = timeout_seconds
            return with_timeout(node_key, fn, timeout_seconds)

        monkeypatch.setattr(compiler_module, "with_timeout", recording)
        return timeouts

    def _supervised_snapshot(self, supervisor_config):
        return make_snapshot(
            "intake",
            [
                make_node("intake", output_key="brief"),
                make_node("sup", "supervisor", supervisor_config, input_key="brief", output_key="answer"),
                make_node("researcher"),
                make_node("lookup", "tool", model=None, tools=[make_tool("lookup", inputs=["q"])]),
            ],
            [("intake", "sup")],
        )

    def test_timeouts_per_node_kind(self, applied):
        snapshot = self._supervised_snapshot({"members": ["researcher", "lookup"]})
        _compiler(_factory(FakeRoutingModel())).compile(snapshot, tool_transport=fake_transport(tool_result(texts=["x"])))

        assert applied == {
            "intake": settings.default_node_timeout_seconds,
            "sup": 60,
            "researcher": settings.member_worker_timeout_seconds,
            "lookup": settings.member_worker_timeout_seconds,
        }
        assert settings.member_worker_timeout_seconds == 120
        assert settings.default_node_timeout_seconds == 300

    def test_configured_supervisor_timeout(self, applied):
        snapshot = self._supervised_snapshot({"members": ["researcher"], "timeout_seconds": 5})
        _compiler(_factory(FakeRoutingModel())).compile(snapshot, tool_transport=fake_transport(tool_result(texts=["x"])))

        assert applied["sup"] == 5

    @pytest.mark.asyncio
    async def test_supervisor_without_limits_routes_several_times(self):
        router = FakeRoutingModel(decisions=["researcher", "researcher", "FINISH"])
        snapshot = make_snapshot(
            "sup",
            [make_node("sup", "supervisor", {"members": ["researcher"]}, input_key="q", output_key="answer"),
             make_node("researcher")],
        )
        graph = _compiler(_factory(router), FakeAgentBuilder("found it")).compile(snapshot)

        final_state = await graph.ainvoke({"q": "find it"})

        assert final_state["answer"] == "found it"
        assert final_state["__supervisor_iteration"] == 3

    @pytest.mark.asyncio
    async def test_slow_supervisor_times_out(self):
        router = FakeRoutingModel(decisions=["FINISH"], delay=1)
        snapshot = make_snapshot(
            "sup",
            [make_node("sup", "supervisor", {"members": ["researcher"], "timeout_seconds": 0.01}),
             make_node("researcher")],
        )
        graph = _compiler(_factory(router)).compile(snapshot)

        with pytest.raises(NodeTimeoutError) as exc_info:
            await graph.ainvoke({})
        assert exc_info.value.node_key == "sup"

    @pytest.mark.asyncio
    async def test_slow_member_worker_times_out(self, monkeypatch):
        monkeypatch.setattr(settings, "member_worker_timeout_seconds", 0.01)
        router = FakeRoutingModel(decisions=["researcher", "FINISH"])
        snapshot = make_snapshot(
            "sup",
            [make_node("sup", "supervisor", {"members": ["researcher"]}), make_node("researcher")],
        )
        graph = _compiler(_factory(router), FakeAgentBuilder("late", delay=1)).compile(snapshot)

        with pytest.raises(NodeTimeoutError) as exc_info:
            await graph.ainvoke({})
        assert exc_info.value.node_key == "researcher"
