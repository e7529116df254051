"""
ZK-PRET Composed Proofs - Dependency Resolver
Version: 1.0
Purpose: Validate a component graph and split it into execution layers
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .errors import DependencyError, ValidationError
from .models import ProofComponent

logger = logging.getLogger(__name__)

_VISITING = 1
_VISITED = 2


@dataclass
class ResolvedGraph:
    """Validated component graph grouped into topological layers"""

    components: Dict[str, ProofComponent]
    layers: List[List[str]] = field(default_factory=list)

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    def layer_of(self, component_id: str) -> int:
        for idx, layer in enumerate(self.layers):
            if component_id in layer:
                return idx
        raise KeyError(component_id)

    def dependents_of(self, component_id: str) -> List[str]:
        return [c.id for c in self.components.values() if component_id in c.dependencies]


class DependencyResolver:
    """
    Validates a component graph and produces its execution order.

    Checks, in order:
    1. Duplicate component IDs -> ValidationError
    2. Dependencies on unknown IDs -> DependencyError naming the missing IDs
    3. Cycles (depth-first, visiting/visited marking) -> DependencyError naming the cycle

    Layer 0 holds components without dependencies; layer k holds components
    whose dependencies all sit in earlier layers. Template order is kept
    within a layer.
    """

    def resolve(self, components: Sequence[ProofComponent]) -> ResolvedGraph:
        if not components:
            raise ValidationError("Composition must contain at least one component", field="components")

        by_id = self._check_unique(components)
        self._check_references(components, by_id)
        self._check_cycles(components, by_id)

        layers = self._build_layers(components)
        logger.debug(f"Resolved {len(components)} components into {len(layers)} layers: {layers}")
        return ResolvedGraph(components=by_id, layers=layers)

    def _check_unique(self, components: Sequence[ProofComponent]) -> Dict[str, ProofComponent]:
        by_id: Dict[str, ProofComponent] = {}
        duplicates: List[str] = []
        for component in components:
            if component.id in by_id and component.id not in duplicates:
                duplicates.append(component.id)
            by_id[component.id] = component

        if duplicates:
            raise ValidationError(
                f"Duplicate component IDs: {', '.join(duplicates)}",
                field="components",
                details={"duplicate_ids": duplicates},
            )
        return by_id

    def _check_references(
        self, components: Sequence[ProofComponent], by_id: Dict[str, ProofComponent]
    ) -> None:
        for component in components:
            missing = [dep for dep in component.dependencies if dep not in by_id]
            if missing:
                raise DependencyError(
                    f"Component '{component.id}' depends on non-existent "
                    f"component(s): {', '.join(missing)}",
                    component_id=component.id,
                    missing_dependencies=missing,
                )

    def _check_cycles(
        self, components: Sequence[ProofComponent], by_id: Dict[str, ProofComponent]
    ) -> None:
        state: Dict[str, int] = {}
        path: List[str] = []

        # Iterative DFS so deep chains do not hit the recursion limit
        for root in components:
            if state.get(root.id) == _VISITED:
                continue

            stack = [(root.id, iter(by_id[root.id].dependencies))]
            state[root.id] = _VISITING
            path.append(root.id)

            while stack:
                node_id, deps = stack[-1]
                dep = next(deps, None)
                if dep is None:
                    stack.pop()
                    path.pop()
                    state[node_id] = _VISITED
                    continue

                dep_state = state.get(dep)
                if dep_state == _VISITING:
                    cycle = path[path.index(dep):] + [dep]
                    raise DependencyError(
                        f"Circular dependency detected: {' -> '.join(cycle)}",
                        component_id=dep,
                        cycle=cycle,
                    )
                if dep_state is None:
                    state[dep] = _VISITING
                    path.append(dep)
                    stack.append((dep, iter(by_id[dep].dependencies)))

    def _build_layers(self, components: Sequence[ProofComponent]) -> List[List[str]]:
        layer_of: Dict[str, int] = {}
        remaining = list(components)

        while remaining:
            next_remaining = []
            for component in remaining:
                if all(dep in layer_of for dep in component.dependencies):
                    layer_of[component.id] = (
                        max((layer_of[d] for d in component.dependencies), default=-1) + 1
                    )
                else:
                    next_remaining.append(component)
            # The graph is acyclic here, so every pass places at least one component
            remaining = next_remaining

        layers: List[List[str]] = [[] for _ in range(max(layer_of.values()) + 1)]
        for component in components:
            layers[layer_of[component.id]].append(component.id)
        return layers
