# tests/test_tasks.py

from __future__ import annotations

from rani_assistant.tasks import DETACHED, TaskQueue

from .conftest import make_task


def test_lower_priority_runs_first(queue: TaskQueue) -> None:
    for tid, prio in (("five", 5), ("one", 1), ("three", 3)):
        queue.enqueue(make_task(tid, prio))
    assert [t.priority for t in queue.dequeue_all_sorted()] == [1, 3, 5]
    assert queue.count() == 0


def test_equal_priorities_keep_arrival_order(queue: TaskQueue) -> None:
    queue.enqueue(make_task("A", 2))
    queue.enqueue(make_task("B", 2))
    assert [t.id for t in queue.sorted_tasks()] == ["A", "B"]


def test_same_id_replaces_and_counts_as_new_arrival(queue: TaskQueue) -> None:
    queue.enqueue(make_task("A", 2, script="old\n"))
    queue.enqueue(make_task("B", 2))
    queue.enqueue(make_task("A", 2, script="new\n"))

    tasks = queue.sorted_tasks()
    assert [t.id for t in tasks] == ["B", "A"]
    assert tasks[1].script == "new\n"
    assert len(queue) == 2


def test_remove_and_find(queue: TaskQueue) -> None:
    queue.enqueue(make_task("A"))
    assert "A" in queue
    assert queue.find_by_id("A").id == "A"
    assert queue.remove("A").id == "A"
    assert queue.remove("A") is None
    assert queue.find_by_id("A") is None


def test_remove_if_same_leaves_a_newer_version(queue: TaskQueue) -> None:
    old = queue.enqueue(make_task("A", script="old\n"))
    queue.enqueue(make_task("A", script="new\n"))

    assert not queue.remove_if_same(old)
    assert queue.find_by_id("A").script == "new\n"
    assert queue.remove_if_same(queue.find_by_id("A"))
    assert "A" not in queue


def test_clear_empties_queue(queue: TaskQueue) -> None:
    queue.enqueue(make_task("A"))
    queue.enqueue(make_task("B"))
    queue.clear()
    assert queue.count() == 0


def test_progress_is_one_based_rank(queue: TaskQueue) -> None:
    queue.enqueue(make_task("late", 9))
    queue.enqueue(make_task("early", 1))
    assert queue.progress(None) is None
    assert queue.progress("early") == 1
    assert queue.progress("late") == 2
    assert queue.progress("adhoc") == DETACHED
