"""Tests for service units and dependency plans."""

import pytest

from stackup.core.actions import CallableAction, CommandAction
from stackup.core.plan import DependencyPlan, ServiceUnit, topological_order
from stackup.utils.errors import (
    ConfigError,
    CyclicDependencyError,
    ErrorCode,
    UnknownDependencyError,
)


def unit(unit_id: str, *depends_on: str) -> ServiceUnit:
    return ServiceUnit(id=unit_id, start_action=lambda: None, depends_on=frozenset(depends_on))


class TestServiceUnit:
    """Tests for ServiceUnit construction."""

    def test_display_name_defaults_to_id(self):
        """Test display name falls back to the id."""
        assert unit("jenkins").display_name == "jenkins"

    def test_callable_start_action_is_wrapped(self):
        """Test plain callables become CallableActions."""
        assert isinstance(unit("jenkins").start_action, CallableAction)

    def test_command_start_action(self):
        """Test string commands become CommandActions."""
        service = ServiceUnit(id="jenkins", start_action="docker start jenkins")
        assert isinstance(service.start_action, CommandAction)
        assert service.start_action.argv == ["docker", "start", "jenkins"]

    def test_empty_id_rejected(self):
        """Test empty ids are a configuration error."""
        with pytest.raises(ConfigError):
            unit("")

    def test_self_dependency_is_cycle(self):
        """Test a unit depending on itself is a cycle."""
        with pytest.raises(CyclicDependencyError):
            unit("a", "a")


class TestTopologicalOrder:
    """Tests for topological_order function."""

    def test_dependencies_come_first(self):
        """Test every dependency precedes its dependents."""
        units = [unit("app", "db", "cache"), unit("db"), unit("cache", "db")]

        ordered = [u.id for u in topological_order(units)]

        for u in units:
            for dep in u.depends_on:
                assert ordered.index(dep) < ordered.index(u.id)

    def test_stable_with_declaration_order(self):
        """Test independent units keep their declared order."""
        units = [unit("jenkins"), unit("tomcat"), unit("sonarqube")]
        assert [u.id for u in topological_order(units)] == ["jenkins", "tomcat", "sonarqube"]

    def test_unit_moves_only_when_forced(self):
        """Test a unit is delayed only until its dependencies are placed."""
        units = [
            unit("kibana", "elasticsearch"),
            unit("jenkins"),
            unit("elasticsearch"),
            unit("tomcat"),
        ]
        assert [u.id for u in topological_order(units)] == [
            "jenkins",
            "elasticsearch",
            "kibana",
            "tomcat",
        ]

    def test_unknown_dependency(self):
        """Test a missing dependency id raises UnknownDependencyError."""
        with pytest.raises(UnknownDependencyError) as exc_info:
            topological_order([unit("app", "db")])

        assert exc_info.value.unit_id == "app"
        assert exc_info.value.dependency == "db"
        assert exc_info.value.code == ErrorCode.UNKNOWN_DEPENDENCY

    def test_cycle_detected(self):
        """Test a cycle raises CyclicDependencyError naming its members."""
        units = [unit("a", "c"), unit("b", "a"), unit("c", "b"), unit("d")]

        with pytest.raises(CyclicDependencyError) as exc_info:
            topological_order(units)

        assert set(exc_info.value.unit_ids) == {"a", "b", "c"}

    def test_empty(self):
        """Test an empty unit list orders to an empty list."""
        assert topological_order([]) == []


class TestDependencyPlan:
    """Tests for DependencyPlan."""

    def test_build_orders_units(self):
        """Test build returns units in dependency order."""
        plan = DependencyPlan.build([unit("app", "db"), unit("db")])
        assert plan.unit_ids == ["db", "app"]
        assert len(plan) == 2
        assert [u.id for u in plan] == ["db", "app"]

    def test_duplicate_ids_rejected(self):
        """Test duplicate ids are a configuration error."""
        with pytest.raises(ConfigError, match="Duplicate"):
            DependencyPlan.build([unit("db"), unit("db")])

    def test_validate_passes_for_built_plan(self):
        """Test a built plan validates."""
        DependencyPlan.build([unit("app", "db"), unit("db")]).validate()

    def test_get(self):
        """Test units can be looked up by id."""
        plan = DependencyPlan.build([unit("db")])
        assert plan.get("db").id == "db"
        with pytest.raises(KeyError):
            plan.get("missing")

    def test_dependents_of_is_transitive(self):
        """Test dependents_of follows the graph transitively, in plan order."""
        plan = DependencyPlan.build(
            [unit("db"), unit("app", "db"), unit("web", "app"), unit("other")]
        )
        assert plan.dependents_of("db") == ["app", "web"]
        assert plan.dependents_of("other") == []

    def test_units_immutable(self):
        """Test the plan exposes an immutable sequence."""
        plan = DependencyPlan.build([unit("db")])
        assert isinstance(plan.units, tuple)
