"""Service units and their dependency-ordered plan."""

import heapq
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from stackup.core.actions import Action, as_action
from stackup.models.endpoint import HealthProbe
from stackup.utils.errors import ConfigError, CyclicDependencyError, UnknownDependencyError

logger = logging.getLogger(__name__)


@dataclass
class ServiceUnit:
    """One independently startable service with its readiness definition."""

    id: str
    start_action: Action
    probes: list[HealthProbe] = field(default_factory=list)
    depends_on: frozenset[str] = frozenset()
    display_name: str = ""
    stop_action: Action | None = None

    def __post_init__(self):
        if not self.id:
            raise ConfigError("Service unit id must not be empty")
        self.start_action = as_action(self.start_action)
        if self.stop_action is not None:
            self.stop_action = as_action(self.stop_action)
        self.depends_on = frozenset(self.depends_on)
        if self.id in self.depends_on:
            raise CyclicDependencyError([self.id])
        if not self.display_name:
            self.display_name = self.id


def topological_order(units: list[ServiceUnit]) -> list[ServiceUnit]:
    """Order units so every dependency precedes its dependents.

    Kahn's algorithm, stable with respect to declaration order.

    Raises:
        UnknownDependencyError: If a dependency id is not among ``units``.
        CyclicDependencyError: If the graph has a cycle.
    """
    by_id = {unit.id: unit for unit in units}
    for unit in units:
        for dep in sorted(unit.depends_on):
            if dep not in by_id:
                raise UnknownDependencyError(unit.id, dep)

    in_degree = {unit.id: len(unit.depends_on) for unit in units}
    dependents: dict[str, list[str]] = {unit.id: [] for unit in units}
    for unit in units:
        for dep in unit.depends_on:
            dependents[dep].append(unit.id)

    # Heap of (declaration index, id): the earliest declared ready unit goes next
    ready = [(index, unit.id) for index, unit in enumerate(units) if in_degree[unit.id] == 0]
    heapq.heapify(ready)
    position = {unit.id: index for index, unit in enumerate(units)}
    ordered: list[str] = []

    while ready:
        _, unit_id = heapq.heappop(ready)
        ordered.append(unit_id)
        for dependent in dependents[unit_id]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (position[dependent], dependent))

    if len(ordered) != len(units):
        done = set(ordered)
        raise CyclicDependencyError([unit.id for unit in units if unit.id not in done])

    return [by_id[unit_id] for unit_id in ordered]


class DependencyPlan:
    """An immutable, topologically ordered sequence of service units.

    Ordering is computed once at construction; the orchestrator trusts it.
    """

    def __init__(self, units: Iterable[ServiceUnit]):
        units = list(units)
        seen: set[str] = set()
        for unit in units:
            if unit.id in seen:
                raise ConfigError(f"Duplicate service unit id '{unit.id}'", {"unit": unit.id})
            seen.add(unit.id)
        self._units = tuple(topological_order(units))
        logger.debug(f"Plan order: {' -> '.join(self.unit_ids)}")

    @classmethod
    def build(cls, units: Iterable[ServiceUnit]) -> "DependencyPlan":
        return cls(units)

    def validate(self) -> None:
        """Re-check the plan invariants.

        Raises:
            UnknownDependencyError: If a dependency is missing or declared later.
        """
        seen: set[str] = set()
        for unit in self._units:
            for dep in sorted(unit.depends_on):
                if dep not in seen:
                    raise UnknownDependencyError(unit.id, dep)
            seen.add(unit.id)

    @property
    def units(self) -> tuple[ServiceUnit, ...]:
        return self._units

    @property
    def unit_ids(self) -> list[str]:
        return [unit.id for unit in self._units]

    def get(self, unit_id: str) -> ServiceUnit:
        for unit in self._units:
            if unit.id == unit_id:
                return unit
        raise KeyError(unit_id)

    def dependents_of(self, unit_id: str) -> list[str]:
        """Ids of all units that depend on ``unit_id``, directly or not, in plan order."""
        affected = {unit_id}
        result = []
        for unit in self._units:
            if unit.depends_on & affected:
                affected.add(unit.id)
                result.append(unit.id)
        return result

    def __iter__(self) -> Iterator[ServiceUnit]:
        return iter(self._units)

    def __len__(self) -> int:
        return len(self._units)
