"""
Tests for the stage registry
"""

import logging

from comfyui_videoflow.default_stages import build_default_registry
from comfyui_videoflow.stages import FunctionStage, StageRegistry, WrappingStage


def _recorder(calls, label):
    def action(ctx):
        calls.append(label)

    action.__name__ = label
    return FunctionStage(action)


class _Flagged(WrappingStage):
    """Runs its own action when ctx says so."""

    def applies(self, ctx):
        return ctx["special"]

    def run_special(self, ctx):
        ctx["calls"].append("special")


class TestOrdering:
    """Priority order and ties"""

    def test_runs_in_priority_order(self):
        calls = []
        registry = StageRegistry()
        registry.register(5, _recorder(calls, "c"))
        registry.register(-10, _recorder(calls, "a"))
        registry.register(0, _recorder(calls, "b"))
        registry.run(None)
        assert calls == ["a", "b", "c"]

    def test_ties_keep_insertion_order(self):
        calls = []
        registry = StageRegistry()
        registry.register(1, _recorder(calls, "first"))
        registry.register(1, _recorder(calls, "second"))
        registry.run(None)
        assert calls == ["first", "second"]

    def test_default_pipeline_priorities(self):
        priorities = [entry["priority"] for entry in build_default_registry().describe()]
        assert priorities == [-10, -9, -8, -5, -4, 0, 10, 11, 12]


class TestFind:
    """Priority lookup"""

    def test_tolerance(self):
        registry = StageRegistry()
        registry.register(11, FunctionStage(lambda ctx: None, "x"))
        assert registry.find(11.00001) == 0
        assert registry.find(11.01) is None

    def test_from_end_picks_last(self):
        registry = StageRegistry()
        registry.register(-4, FunctionStage(lambda ctx: None, "first"))
        registry.register(-4, FunctionStage(lambda ctx: None, "last"))
        assert registry.get(-4).name == "first"
        assert registry.get(-4, from_end=True).name == "last"


class TestReplace:
    """Decorating stages in place"""

    def test_wrapper_receives_original(self):
        registry = build_default_registry()
        assert registry.replace(11, _Flagged)
        stage = registry.get(11)
        assert stage.wrapped.name == "image_to_video"
        assert stage.name == "_Flagged(image_to_video)"

    def test_missing_priority_warns_and_keeps_registry(self, capturing_logger):
        registry = build_default_registry()
        before = registry.describe()
        assert registry.replace(99, _Flagged) is False
        assert registry.describe() == before
        warnings = capturing_logger.messages(logging.WARNING)
        assert any("could not find workflow step priority 99" in m for m in warnings)

    def test_replace_keeps_position(self):
        registry = build_default_registry()
        registry.replace(-4, _Flagged, from_end=True)
        names = [entry["stage"] for entry in registry.describe()]
        assert names[4] == "_Flagged(refiner)"
        assert len(registry) == 9

    def test_wrapping_stage_delegates_when_not_applicable(self):
        calls = []
        registry = StageRegistry()
        registry.register(1, _recorder(calls, "default"))
        registry.replace(1, _Flagged)

        registry.run({"special": False, "calls": calls})
        registry.run({"special": True, "calls": calls})
        assert calls == ["default", "special"]
