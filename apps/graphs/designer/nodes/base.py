from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

StepFn = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class CompiledNode:
    """An executable graph node: ``fn`` maps state to a state delta."""
    name: str
    description: str
    fn: StepFn
