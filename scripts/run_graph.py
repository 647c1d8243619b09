#!/usr/bin/env python3
"""
Agent Graph Run Script

Loads a stored agent graph, runs it once with the given initial state and
prints the final state as JSON. The run and its steps are recorded in the
agent_graph_runs / agent_graph_run_steps tables.

Usage:
    python scripts/run_graph.py --graph-id <uuid> --state '{"question": "hi"}'

Configuration:
    Set DATABASE_URL, MCP_SERVER_URL and provider keys in .env file or
    environment variables.
"""

import argparse
import asyncio
import json
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agentlib.database import dispose_engine
from agentlib.exceptions import GraphBackendError
from agentlib.observability import configure_logging, to_jsonable
from apps.graphs.runtime.executor import GraphExecutor


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a stored agent graph once.")
    parser.add_argument("--graph-id", required=True, help="UUID of the agent graph")
    parser.add_argument("--state", default="{}", help="Initial state as a JSON object")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser.parse_args(argv)


async def run(graph_id: str, initial_state: dict) -> dict:
    try:
        return await GraphExecutor().execute(graph_id, initial_state)
    finally:
        await dispose_engine()


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        initial_state = json.loads(args.state)
    except json.JSONDecodeError as e:
        print(f"--state is not valid JSON: {e}", file=sys.stderr)
        return 2
    if not isinstance(initial_state, dict):
        print("--state must be a JSON object", file=sys.stderr)
        return 2

    try:
        final_state = asyncio.run(run(args.graph_id, initial_state))
    except GraphBackendError as e:
        print(f"Run failed ({type(e).__name__}): {e}", file=sys.stderr)
        return 1

    print(json.dumps(to_jsonable(final_state), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
