"""
Pipeline combinator.

A pipeline is an ordered list of named stages. Each stage receives the
value produced by the previous one and returns a StageResult: either
``proceed(value)`` to continue, or ``halt(answer, state)`` to stop with a
final answer and terminal state. The first halt short-circuits the rest.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Literal, Optional, TypeVar

from universal_edgar.models import UniversalAnswer

logger = logging.getLogger(__name__)

T = TypeVar("T")

PipelineState = Literal[
    "parsing",
    "routing",
    "extracting",
    "synthesizing",
    "done",
    "low_confidence_parse",
    "insufficient_data",
    "system_error",
    "deadline_exceeded",
]

TERMINAL_STATES = {"done", "low_confidence_parse", "insufficient_data", "system_error", "deadline_exceeded"}


@dataclass(frozen=True)
class StageResult(Generic[T]):
    value: Optional[T] = None
    answer: Optional[UniversalAnswer] = None
    state: Optional[PipelineState] = None

    @classmethod
    def proceed(cls, value: T) -> "StageResult[T]":
        return cls(value=value)

    @classmethod
    def halt(cls, answer: UniversalAnswer, state: PipelineState) -> "StageResult[T]":
        if state not in TERMINAL_STATES:
            raise ValueError(f"Cannot halt in non-terminal state {state!r}")
        return cls(answer=answer, state=state)

    @property
    def halted(self) -> bool:
        return self.answer is not None


@dataclass
class Stage(Generic[T]):
    """A named step; ``state`` is the pipeline state while it runs."""
    state: PipelineState
    run: Callable[[T], StageResult[T]]


@dataclass
class Pipeline(Generic[T]):
    stages: List[Stage[T]]
    finish: Callable[[T], UniversalAnswer]
    on_transition: Optional[Callable[[PipelineState], None]] = None
    history: List[PipelineState] = field(default_factory=list)

    @property
    def state(self) -> Optional[PipelineState]:
        return self.history[-1] if self.history else None

    def transition(self, state: PipelineState) -> None:
        self.history.append(state)
        logger.debug(f"Pipeline state -> {state}")
        if self.on_transition is not None:
            self.on_transition(state)

    def run(self, value: T) -> UniversalAnswer:
        """Run every stage in order; exceptions propagate to the caller."""
        for stage in self.stages:
            self.transition(stage.state)
            result = stage.run(value)
            if result.halted:
                self.transition(result.state or "done")
                return result.answer
            value = result.value
        answer = self.finish(value)
        self.transition("done")
        return answer
