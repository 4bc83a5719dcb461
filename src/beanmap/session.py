from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class MappingSession:
    """Visited set for one top-level ``Mapper.map`` call.

    Keyed by source identity. Source objects are held so their ids stay
    unique for the lifetime of the session.
    """

    visited: Dict[int, List[Tuple[Any, Any]]] = field(default_factory=dict)
    propagating: List[BaseException] = field(default_factory=list)

    def record(self, source: Any, destination: Any) -> None:
        """Remember ``destination`` for ``source``. The latest record wins lookups."""
        pairs = [pair for pair in self.visited.get(id(source), ()) if pair[1] is not destination]
        pairs.insert(0, (source, destination))
        self.visited[id(source)] = pairs

    def lookup(self, source: Any, required_type: Optional[type]) -> Any:
        for _, destination in self.visited.get(id(source), ()):
            if required_type is None or isinstance(destination, required_type):
                return destination
        return None

    def propagate(self, error: BaseException) -> None:
        self.propagating.append(error)

    def is_propagating(self, error: BaseException) -> bool:
        return any(error is pending for pending in self.propagating)
