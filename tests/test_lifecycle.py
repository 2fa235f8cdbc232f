"""Task lifecycle guards and status menu."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from gitcrew.domain import lifecycle
from gitcrew.domain.errors import InvalidTransitionError
from gitcrew.domain.lifecycle import TaskAction
from gitcrew.domain.models import Task, TaskStatus


def _task(status: TaskStatus, **kwargs) -> Task:
    return Task(id=1, title="Fix login", status=status, **kwargs)


@pytest.mark.parametrize("status", [TaskStatus.CLOSED, TaskStatus.MERGED])
def test_terminal_tasks_never_offer_merge_or_close(status: TaskStatus) -> None:
    task = _task(status, started_at=datetime.now(timezone.utc))
    actions = lifecycle.available_actions(task)
    assert TaskAction.MERGE not in actions
    assert TaskAction.CLOSE not in actions
    assert TaskAction.CHANGE_STATUS not in actions
    assert lifecycle.default_action(task) is None


@pytest.mark.parametrize("status", list(TaskStatus))
def test_start_offered_exactly_for_startable_statuses(status: TaskStatus) -> None:
    expected = status in (TaskStatus.TODO, TaskStatus.ERROR, TaskStatus.STOPPED)
    assert lifecycle.is_allowed(_task(status), TaskAction.START) is expected


def test_stop_and_attach_follow_the_session() -> None:
    idle = _task(TaskStatus.IN_PROGRESS)
    live = _task(TaskStatus.IN_PROGRESS, session="crew-1")
    assert not lifecycle.is_allowed(idle, TaskAction.STOP)
    assert not lifecycle.is_allowed(idle, TaskAction.ATTACH)
    assert lifecycle.is_allowed(live, TaskAction.STOP)
    assert lifecycle.is_allowed(live, TaskAction.ATTACH)


@pytest.mark.parametrize("status", [TaskStatus.CLOSED, TaskStatus.MERGED])
def test_stop_and_attach_never_offered_on_terminal_tasks(status: TaskStatus) -> None:
    stale = _task(status, session="crew-1")
    actions = lifecycle.available_actions(stale)
    assert TaskAction.STOP not in actions
    assert TaskAction.ATTACH not in actions


def test_review_needs_a_finished_run_and_no_session() -> None:
    started = datetime.now(timezone.utc)
    assert lifecycle.is_allowed(_task(TaskStatus.FOR_REVIEW, started_at=started), TaskAction.REVIEW)
    assert not lifecycle.is_allowed(_task(TaskStatus.FOR_REVIEW), TaskAction.REVIEW)
    assert not lifecycle.is_allowed(
        _task(TaskStatus.FOR_REVIEW, started_at=started, session="crew-1-review"), TaskAction.REVIEW
    )
    assert not lifecycle.is_allowed(_task(TaskStatus.REVIEWED, started_at=started), TaskAction.REVIEW)


def test_guarded_table_never_reaches_statuses_with_side_effects() -> None:
    side_effects = {TaskStatus.STOPPED, TaskStatus.REVIEWING, TaskStatus.CLOSED, TaskStatus.MERGED}
    for current, targets in lifecycle.TRANSITIONS.items():
        assert not side_effects & set(targets), current
    back_to_work = [s for s, targets in lifecycle.TRANSITIONS.items() if TaskStatus.IN_PROGRESS in targets]
    assert back_to_work == [TaskStatus.NEEDS_INPUT]


def test_merge_only_after_review() -> None:
    assert lifecycle.can_merge(_task(TaskStatus.DONE))
    assert lifecycle.can_merge(_task(TaskStatus.REVIEWED))
    assert not lifecycle.can_merge(_task(TaskStatus.TODO))
    assert not lifecycle.can_merge(_task(TaskStatus.FOR_REVIEW))


def test_block_is_orthogonal_to_status() -> None:
    task = _task(TaskStatus.IN_PROGRESS)
    assert lifecycle.can_block(task)
    assert not lifecycle.can_unblock(task)
    task.block_reason = "waiting for API keys"
    assert not lifecycle.can_block(task)
    assert lifecycle.can_unblock(task)
    assert task.status is TaskStatus.IN_PROGRESS
    assert not lifecycle.can_block(_task(TaskStatus.MERGED))


def test_default_action_per_status() -> None:
    assert lifecycle.default_action(_task(TaskStatus.TODO)) is TaskAction.START
    assert lifecycle.default_action(_task(TaskStatus.ERROR)) is TaskAction.START
    assert lifecycle.default_action(_task(TaskStatus.IN_PROGRESS, session="crew-1")) is TaskAction.ATTACH
    assert lifecycle.default_action(_task(TaskStatus.DONE)) is TaskAction.MERGE
    assert lifecycle.default_action(_task(TaskStatus.FOR_REVIEW)) is None


def test_status_choices_rank_guarded_before_forced() -> None:
    choices = lifecycle.status_choices(TaskStatus.IN_PROGRESS)
    guarded = [c.status for c in choices if not c.forced]
    forced = [c.status for c in choices if c.forced]

    assert guarded == [TaskStatus.NEEDS_INPUT, TaskStatus.FOR_REVIEW, TaskStatus.ERROR]
    first_forced = next(i for i, c in enumerate(choices) if c.forced)
    assert all(not c.forced for c in choices[:first_forced])
    assert all(c.forced for c in choices[first_forced:])
    assert TaskStatus.IN_PROGRESS not in guarded + forced
    assert set(guarded + forced) == set(TaskStatus) - {TaskStatus.IN_PROGRESS}
    assert TaskStatus.CLOSED in forced


def test_terminal_status_offers_only_forced_choices() -> None:
    choices = lifecycle.status_choices(TaskStatus.MERGED)
    assert choices
    assert all(choice.forced for choice in choices)


def test_validate_transition_rejects_unguarded_change_unless_forced() -> None:
    task = _task(TaskStatus.TODO)
    with pytest.raises(InvalidTransitionError):
        lifecycle.validate_transition(task, TaskStatus.MERGED)
    lifecycle.validate_transition(task, TaskStatus.MERGED, force=True)
    with pytest.raises(InvalidTransitionError):
        lifecycle.validate_transition(task, TaskStatus.TODO, force=True)


def test_sort_key_puts_attention_first() -> None:
    tasks = [
        Task(id=3, title="c", status=TaskStatus.TODO),
        Task(id=1, title="a", status=TaskStatus.MERGED),
        Task(id=2, title="b", status=TaskStatus.NEEDS_INPUT),
        Task(id=4, title="d", status=TaskStatus.TODO),
    ]
    ordered = sorted(tasks, key=lifecycle.sort_key)
    assert [t.id for t in ordered] == [2, 3, 4, 1]
