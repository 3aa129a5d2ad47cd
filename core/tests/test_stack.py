"""Tests for the execution stack and loop iteration state."""

import pytest

from flowrunner.flow.stack import (
    ExecutionStack,
    FrameKind,
    LoopPhase,
    LoopState,
    PopOutcome,
    StackEffect,
)


class TestPushPop:
    def test_push_creates_frame_at_cursor_zero(self):
        stack = ExecutionStack()
        assert stack.push(["a", "b"], {"x": 1}, FrameKind.MAIN)
        assert len(stack) == 1
        assert stack.top.cursor == 0
        assert stack.top.current_step() == "a"

    def test_push_empty_is_skipped_and_reported(self):
        skipped = []
        stack = ExecutionStack(on_skip=skipped.append)
        assert not stack.push([], {}, FrameKind.THEN, parent_step_id="c1")
        assert len(stack) == 0
        assert skipped == [FrameKind.THEN]

    def test_pop_removes_plain_frame(self):
        stack = ExecutionStack()
        stack.push(["a"], {}, FrameKind.MAIN)
        assert stack.pop() == PopOutcome.POPPED
        assert not stack

    def test_pop_empty_raises(self):
        with pytest.raises(IndexError):
            ExecutionStack().pop()


class TestLoopFrames:
    def test_push_loop_prepares_first_item(self):
        stack = ExecutionStack()
        frame = stack.push_loop(["body"], [10, 20], "n", {"base": True}, "loop1")
        assert frame is stack.top
        assert frame.kind == FrameKind.LOOP
        assert frame.context == {"base": True, "n": 10}
        assert frame.loop_state.phase == LoopPhase.RUNNING_BODY

    def test_pop_rewinds_until_items_exhausted(self):
        stack = ExecutionStack()
        frame = stack.push_loop(["body"], [1, 2, 3], "i", {}, "loop1")
        seen = [frame.context["i"]]

        frame.cursor = 1
        while stack.pop() == PopOutcome.NEXT_ITERATION:
            assert frame.cursor == 0
            seen.append(frame.context["i"])
            frame.cursor = 1

        assert seen == [1, 2, 3]
        assert not stack
        assert frame.loop_state.phase == LoopPhase.DONE

    def test_iteration_context_rebuilt_from_base(self):
        stack = ExecutionStack()
        frame = stack.push_loop(["body"], ["a", "b"], "item", {"keep": 1}, "loop1")
        frame.context["extracted"] = "leak?"
        frame.cursor = 1
        assert stack.pop() == PopOutcome.NEXT_ITERATION
        assert frame.context == {"keep": 1, "item": "b"}

    def test_base_context_is_a_copy(self):
        parent = {"keep": 1}
        stack = ExecutionStack()
        stack.push_loop(["body"], [1], "item", parent, "loop1")
        parent["keep"] = 2
        assert stack.top.loop_state.base_context == {"keep": 1}

    def test_push_loop_without_items_pushes_nothing(self):
        stack = ExecutionStack()
        assert stack.push_loop(["body"], [], "item", {}, "loop1") is None
        assert not stack

    def test_push_loop_with_empty_body_is_skipped(self):
        skipped = []
        stack = ExecutionStack(on_skip=skipped.append)
        assert stack.push_loop([], [1, 2], "item", {}, "loop1") is None
        assert skipped == [FrameKind.LOOP]

    def test_loop_state_rejects_double_begin(self):
        state = LoopState(items=[1], loop_var_name="i", base_context={})
        state.begin_item()
        with pytest.raises(RuntimeError):
            state.begin_item()


class TestAdvanceAfter:
    def test_stayed_increments_top(self):
        stack = ExecutionStack()
        stack.push(["a", "b"], {}, FrameKind.MAIN)
        frame = stack.top
        stack.advance_after(frame, StackEffect.STAYED)
        assert frame.cursor == 1

    def test_pushed_child_increments_parent_not_child(self):
        stack = ExecutionStack()
        stack.push(["cond", "next"], {}, FrameKind.MAIN)
        parent = stack.top
        stack.push(["then1"], {}, FrameKind.THEN, parent_step_id="cond")
        stack.advance_after(parent, StackEffect.PUSHED_CHILD)
        assert parent.cursor == 1
        assert stack.top.cursor == 0

    def test_mismatched_effect_detected(self):
        stack = ExecutionStack()
        stack.push(["a"], {}, FrameKind.MAIN)
        with pytest.raises(RuntimeError):
            stack.advance_after(stack.top, StackEffect.PUSHED_CHILD)


class TestDescribe:
    def test_describe_lists_frames_bottom_up(self):
        stack = ExecutionStack()
        stack.push(["c"], {}, FrameKind.MAIN)
        stack.push(["t"], {}, FrameKind.THEN, parent_step_id="c")
        assert stack.describe() == [
            {"kind": "main", "cursor": 0, "parent_step_id": None},
            {"kind": "then", "cursor": 0, "parent_step_id": "c"},
        ]

    def test_is_at_start(self):
        stack = ExecutionStack()
        assert stack.is_at_start()
        stack.push(["a", "b"], {}, FrameKind.MAIN)
        assert stack.is_at_start()
        stack.advance_after(stack.top, StackEffect.STAYED)
        assert not stack.is_at_start()
