"""
Execution state schema.

LangGraph only carries state keys declared on the graph's state type, and
merges each key with that key's reducer. The schema is built per compile as
a TypedDict with ``Annotated[Any, reducer]`` fields.
"""
from typing import Any, Annotated, Callable, Dict, Iterable, Optional, TypedDict

from agentlib.exceptions import ConfigError
from agentlib.types import JSONValue

from .configs import load_config_json

MESSAGES_KEY = "messages"
SUPERVISOR_NEXT_KEY = "__supervisor_next"
SUPERVISOR_ITERATION_KEY = "__supervisor_iteration"

REDUCER_APPEND = "append"
REDUCER_OVERWRITE = "overwrite"


def overwrite_reducer(existing: Any, new: Any) -> Any:
    """Reducer: last writer wins (accepts concurrent writes)."""
    return new


def append_reducer(existing: Any, new: Any) -> list:
    """Reducer: concatenate sequences, keeping prior elements in order."""
    if existing is None:
        existing = []
    elif not isinstance(existing, list):
        existing = list(existing) if isinstance(existing, tuple) else [existing]
    if new is None:
        return list(existing)
    if isinstance(new, (list, tuple)):
        return list(existing) + list(new)
    return list(existing) + [new]


REDUCERS: Dict[str, Callable[[Any, Any], Any]] = {
    REDUCER_APPEND: append_reducer,
    REDUCER_OVERWRITE: overwrite_reducer,
}


def parse_state_schema(raw: JSONValue) -> Dict[str, str]:
    """
    Parse a stored state schema into key -> reducer kind.

    Blank or missing schemas are empty. Unknown reducer kinds are errors.
    """
    try:
        declared = load_config_json(raw, "state_schema")
    except ConfigError as e:
        raise ConfigError(f"failed to parse state_schema: {e}") from e
    schema: Dict[str, str] = {}
    for key, reducer in declared.items():
        if reducer not in REDUCERS:
            raise ConfigError(f"unknown reducer type {reducer!r} for key {key!r}")
        schema[key] = reducer
    return schema


def build_state_schema(
    reducers: Dict[str, str],
    extra_keys: Optional[Iterable[str]] = None,
    name: str = "GraphState",
) -> type:
    """
    Create the TypedDict state class for one compiled graph.

    Args:
        reducers: key -> reducer kind for keys with a declared merge policy
        extra_keys: further keys the graph reads or writes; these overwrite
        name: TypedDict class name

    Returns:
        TypedDict class whose fields carry their reducer via Annotated
    """
    fields: Dict[str, Any] = {}
    for key in extra_keys or ():
        fields[key] = Annotated[Any, overwrite_reducer]
    for key, reducer in reducers.items():
        fields[key] = Annotated[Any, REDUCERS[reducer]]
    return TypedDict(name, fields, total=False)
