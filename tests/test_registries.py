import pytest

from shrubb_jobs.v1.core.registries import JobRegistry, Registry


class TestRegistry:
    def test_register_and_get(self):
        registry = Registry[str]("Widget")
        registry.register("a", "first")

        assert registry.get("a") == "first"
        assert registry.has("a")
        assert not registry.has("b")
        assert registry.list() == ["a"]

    def test_missing_name(self):
        registry = Registry[str]("Widget")

        with pytest.raises(KeyError, match="widget implementation"):
            registry.get("missing")

    def test_frozen_registry_rejects_registration(self):
        registry = Registry[str]("Widget")
        registry.register("a", "first")
        registry.freeze()

        assert registry.is_frozen()
        with pytest.raises(RuntimeError, match="frozen"):
            registry.register("b", "second")
        assert registry.get("a") == "first"


class TestJobRegistry:
    def test_registries_are_independent(self):
        first = JobRegistry()
        second = JobRegistry()
        first.register("planner", object())

        assert first.has("planner")
        assert not second.has("planner")
        assert first.name == "Job"
