# tests/test_states.py
import itertools

import pytest

from taskcore.domain.errors import InvalidTransitionError
from taskcore.domain.states import (
    TERMINAL_STATUSES,
    RunStatus,
    TaskPriority,
    TaskStatus,
    allowed_transitions,
    can_transition,
    transition,
)

LEGAL = {
    (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
    (TaskStatus.PENDING, TaskStatus.SCHEDULED),
    (TaskStatus.PENDING, TaskStatus.CANCELLED),
    (TaskStatus.SCHEDULED, TaskStatus.IN_PROGRESS),
    (TaskStatus.SCHEDULED, TaskStatus.CANCELLED),
    (TaskStatus.IN_PROGRESS, TaskStatus.PAUSED),
    (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
    (TaskStatus.IN_PROGRESS, TaskStatus.FAILED),
    (TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED),
    (TaskStatus.PAUSED, TaskStatus.IN_PROGRESS),
    (TaskStatus.PAUSED, TaskStatus.CANCELLED),
    (TaskStatus.FAILED, TaskStatus.PENDING),
}


def test_can_transition_is_total_and_matches_table():
    for current, target in itertools.product(TaskStatus, TaskStatus):
        assert can_transition(current, target) is ((current, target) in LEGAL)


def test_every_illegal_pair_raises_naming_both_ends():
    for current, target in itertools.product(TaskStatus, TaskStatus):
        if (current, target) in LEGAL:
            assert transition(current, target) == target
            continue
        with pytest.raises(InvalidTransitionError) as exc:
            transition(current, target)
        assert exc.value.code == "INVALID_TRANSITION"
        assert exc.value.details == {"from": current.value, "to": target.value}


def test_self_transitions_are_rejected():
    for status in TaskStatus:
        assert not can_transition(status, status)


def test_terminal_statuses_have_no_exits():
    assert TERMINAL_STATUSES == {TaskStatus.COMPLETED, TaskStatus.CANCELLED}
    for status in TERMINAL_STATUSES:
        assert status.is_terminal
        assert allowed_transitions(status) == frozenset()
    assert not TaskStatus.FAILED.is_terminal


def test_status_values_accept_plain_strings():
    assert can_transition("pending", "in_progress")
    assert TaskStatus("in_progress") is TaskStatus.IN_PROGRESS


def test_priority_is_ordered():
    assert TaskPriority.LOW < TaskPriority.MEDIUM < TaskPriority.HIGH < TaskPriority.CRITICAL
    assert max([TaskPriority.HIGH, TaskPriority.CRITICAL, TaskPriority.LOW]) == TaskPriority.CRITICAL
    assert sorted([TaskPriority.HIGH, TaskPriority.LOW]) == [TaskPriority.LOW, TaskPriority.HIGH]


def test_run_status_terminality():
    assert not RunStatus.CREATED.is_terminal
    assert not RunStatus.RUNNING.is_terminal
    assert all(s.is_terminal for s in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED))
