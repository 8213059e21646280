"""
Stage Registry

Ordered, priority-keyed list of pipeline stages. Stages are objects with a
run(ctx) method; a stage that replaces another owns a reference to it so it
can delegate back to the default behaviour.
"""

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Optional

from .mcp_utils import get_logger

if TYPE_CHECKING:
    from .context import GenerationContext

logger = get_logger("stages")

PRIORITY_TOLERANCE = 1e-4


class PipelineStage:
    """One step of workflow construction."""

    name = "stage"

    def run(self, ctx: "GenerationContext") -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class FunctionStage(PipelineStage):
    """Stage backed by a plain function."""

    def __init__(self, action: Callable[["GenerationContext"], None], name: Optional[str] = None):
        self.action = action
        self.name = name or action.__name__

    def run(self, ctx: "GenerationContext") -> None:
        self.action(ctx)


class WrappingStage(PipelineStage):
    """
    Stage that decorates another.

    Subclasses implement applies(ctx) and run_special(ctx); when applies()
    is False the wrapped stage runs unchanged.
    """

    def __init__(self, wrapped: PipelineStage):
        self.wrapped = wrapped

    @property
    def name(self) -> str:
        return f"{type(self).__name__}({self.wrapped.name})"

    def applies(self, ctx: "GenerationContext") -> bool:
        raise NotImplementedError

    def run_special(self, ctx: "GenerationContext") -> None:
        raise NotImplementedError

    def run(self, ctx: "GenerationContext") -> None:
        if self.applies(ctx):
            self.run_special(ctx)
        else:
            self.wrapped.run(ctx)


@dataclass
class StageEntry:
    priority: float
    stage: PipelineStage
    order: int


class StageRegistry:
    """Priority-ordered stages; ties keep insertion order."""

    def __init__(self):
        self._entries: List[StageEntry] = []
        self._counter = 0
        self._lock = threading.Lock()

    def _sort(self) -> None:
        self._entries.sort(key=lambda e: (e.priority, e.order))

    def register(self, priority: float, stage: PipelineStage) -> None:
        with self._lock:
            self._entries.append(StageEntry(priority, stage, self._counter))
            self._counter += 1
            self._sort()

    def find(self, priority: float, from_end: bool = False) -> Optional[int]:
        """Index of the first (or last) stage within tolerance of priority."""
        matches = [
            i for i, entry in enumerate(self._entries) if abs(entry.priority - priority) < PRIORITY_TOLERANCE
        ]
        if not matches:
            return None
        return matches[-1] if from_end else matches[0]

    def replace(
        self,
        priority: float,
        factory: Callable[[PipelineStage], PipelineStage],
        from_end: bool = False,
    ) -> bool:
        """
        Replace the stage at priority with factory(original).

        A missing priority logs a warning and leaves the registry unchanged.
        """
        with self._lock:
            index = self.find(priority, from_end)
            if index is None:
                logger.warning("stages: could not find workflow step priority %s to replace", priority)
                return False
            entry = self._entries[index]
            self._entries[index] = StageEntry(entry.priority, factory(entry.stage), entry.order)
            self._sort()
            logger.debug("stages: replaced stage at priority %s with %s", priority, self._entries[index].stage.name)
            return True

    def get(self, priority: float, from_end: bool = False) -> Optional[PipelineStage]:
        index = self.find(priority, from_end)
        return None if index is None else self._entries[index].stage

    @property
    def stages(self) -> List[PipelineStage]:
        with self._lock:
            return [entry.stage for entry in self._entries]

    def describe(self) -> List[dict]:
        with self._lock:
            return [{"priority": entry.priority, "stage": entry.stage.name} for entry in self._entries]

    def run(self, ctx: "GenerationContext") -> None:
        """Run every stage in priority order against one context."""
        with self._lock:
            entries = list(self._entries)
        for entry in entries:
            logger.debug("stages: running %s (priority %s)", entry.stage.name, entry.priority)
            entry.stage.run(ctx)

    def __len__(self) -> int:
        return len(self._entries)
