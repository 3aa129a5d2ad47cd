"""
Execution Stack - Where the engine is inside a nested step tree.

Instead of recursing into condition branches and loop bodies, the engine
keeps an explicit LIFO of scope frames. Each frame holds a step list, a
cursor into it and the variable context for that scope. Because the whole
position lives in plain data, execution can stop after any single step and
resume later (stepping mode), and deep loops never grow the Python stack.

Frame lifecycle:
    push()          -> new frame, cursor 0
    advance_after() -> cursor + 1 on the frame that owned the executed step
    pop()           -> loop frames move to their next item; others are removed
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from flowrunner.flow.context import Context, snapshot

logger = logging.getLogger(__name__)


class FrameKind(StrEnum):
    MAIN = "main"
    THEN = "then"
    ELSE = "else"
    LOOP = "loop"


class StackEffect(StrEnum):
    """What executing one step did to the stack."""

    STAYED = "stayed"  # Stack shape unchanged
    PUSHED_CHILD = "pushed_child"  # A branch or loop body frame now sits on top


class PopOutcome(StrEnum):
    NEXT_ITERATION = "next_iteration"  # Loop frame rewound for its next item
    POPPED = "popped"  # Frame removed


class LoopPhase(StrEnum):
    AWAITING_ITEM = "awaiting_item"
    RUNNING_BODY = "running_body"
    DONE = "done"


@dataclass
class LoopState:
    """
    Iteration state of a loop frame.

    awaiting_item(i) -> running_body -> awaiting_item(i + 1) ... -> done
    """

    items: list[Any]
    loop_var_name: str
    base_context: Context
    item_index: int = 0
    phase: LoopPhase = LoopPhase.AWAITING_ITEM

    @property
    def current_item(self) -> Any:
        return self.items[self.item_index]

    def begin_item(self) -> Context:
        """Enter the body for the current item and build its context."""
        if self.phase != LoopPhase.AWAITING_ITEM:
            raise RuntimeError(f"Cannot begin an item while loop is {self.phase}")
        self.phase = LoopPhase.RUNNING_BODY
        return {**self.base_context, self.loop_var_name: self.current_item}

    def finish_item(self) -> bool:
        """Leave the body. Returns True if another item is waiting."""
        self.item_index += 1
        if self.item_index < len(self.items):
            self.phase = LoopPhase.AWAITING_ITEM
            return True
        self.phase = LoopPhase.DONE
        return False


@dataclass
class ScopeFrame:
    """One level of the execution stack."""

    steps: list[Any]
    context: Context
    kind: FrameKind = FrameKind.MAIN
    parent_step_id: str | None = None
    cursor: int = 0
    loop_state: LoopState | None = None

    @property
    def exhausted(self) -> bool:
        return self.cursor >= len(self.steps)

    @property
    def has_more(self) -> bool:
        return self.cursor < len(self.steps)

    def current_step(self) -> Any:
        return self.steps[self.cursor]

    def describe(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "cursor": self.cursor,
            "parent_step_id": self.parent_step_id,
        }


class ExecutionStack:
    """
    LIFO of scope frames. Empty means the flow has finished.

    Example:
        stack = ExecutionStack()
        stack.push(flow.steps, {"base": "https://api"}, FrameKind.MAIN)
        frame = stack.top
        step = frame.current_step()
        ...
        stack.advance_after(frame, StackEffect.STAYED)
    """

    def __init__(self, on_skip: Callable[[FrameKind], None] | None = None):
        self._frames: list[ScopeFrame] = []
        self._on_skip = on_skip

    def __len__(self) -> int:
        return len(self._frames)

    def __bool__(self) -> bool:
        return bool(self._frames)

    def __iter__(self):
        return iter(self._frames)

    @property
    def top(self) -> ScopeFrame | None:
        return self._frames[-1] if self._frames else None

    @property
    def frames(self) -> list[ScopeFrame]:
        return list(self._frames)

    def clear(self) -> None:
        self._frames.clear()

    def push(
        self,
        steps: list[Any],
        context: Context,
        kind: FrameKind,
        parent_step_id: str | None = None,
    ) -> bool:
        """Push a frame over ``steps``. Empty step lists are skipped."""
        if not steps:
            logger.debug(f"Skipping empty {kind} frame (parent={parent_step_id})")
            if self._on_skip:
                self._on_skip(kind)
            return False
        self._frames.append(
            ScopeFrame(steps=steps, context=context, kind=kind, parent_step_id=parent_step_id)
        )
        return True

    def push_loop(
        self,
        steps: list[Any],
        items: list[Any],
        loop_var_name: str,
        context: Context,
        parent_step_id: str,
    ) -> ScopeFrame | None:
        """Push a loop frame and enter its first item.

        Returns None (and pushes nothing) for an empty body or no items.
        """
        if not steps or not items:
            if not steps and self._on_skip:
                self._on_skip(FrameKind.LOOP)
            return None
        state = LoopState(items=list(items), loop_var_name=loop_var_name, base_context=snapshot(context))
        frame = ScopeFrame(
            steps=steps,
            context=state.begin_item(),
            kind=FrameKind.LOOP,
            parent_step_id=parent_step_id,
            loop_state=state,
        )
        self._frames.append(frame)
        return frame

    def pop(self) -> PopOutcome:
        """Retire the top frame.

        A loop frame with items left is rewound to cursor 0 with a fresh
        context for the next item instead of being removed.
        """
        if not self._frames:
            raise IndexError("pop from empty execution stack")
        frame = self._frames[-1]
        state = frame.loop_state
        if state is not None and state.finish_item():
            frame.cursor = 0
            frame.context = state.begin_item()
            return PopOutcome.NEXT_ITERATION
        self._frames.pop()
        return PopOutcome.POPPED

    def advance_after(self, frame: ScopeFrame, effect: StackEffect) -> None:
        """Move past the step ``frame`` just executed.

        With ``STAYED`` the frame is still on top. With ``PUSHED_CHILD`` it
        sits directly beneath the new child, which owns its own cursor.
        """
        expected = self.top if effect == StackEffect.STAYED else self._below_top()
        if expected is not frame:
            raise RuntimeError(f"Execution stack out of sync after step ({effect})")
        frame.cursor += 1

    def _below_top(self) -> ScopeFrame | None:
        return self._frames[-2] if len(self._frames) >= 2 else None

    def describe(self) -> list[dict[str, Any]]:
        """Lightweight view of the stack for observers."""
        return [frame.describe() for frame in self._frames]

    def is_at_start(self) -> bool:
        return not self._frames or (len(self._frames) == 1 and self._frames[0].cursor == 0)
