"""领域事件钩子测试"""

import pytest
from planwise.automation import get_trigger_manager, hooks, reset_trigger_manager


@pytest.fixture
def received(trigger_manager):
    events: list[tuple[str, dict]] = []
    for name in (
        "task.created",
        "task.updated",
        "task.completed",
        hooks.EXERCISE_LOG_CREATED,
        hooks.EXERCISE_GOAL_ACHIEVED,
        hooks.JOURNAL_ENTRY_CREATED,
        hooks.JOURNAL_ENTRY_UPDATED,
        "habit.streak",
    ):
        trigger_manager.on(name, lambda payload, name=name: events.append((name, payload)))
    return events


class TestHooks:
    async def test_task_hooks(self, trigger_manager, received):
        await hooks.on_task_created({"task_id": "t1"}, manager=trigger_manager)
        await hooks.on_task_updated(
            {"task_id": "t1"}, {"task_id": "t1", "status": "pending"}, manager=trigger_manager
        )
        await hooks.on_task_completed({"task_id": "t1"}, manager=trigger_manager)

        assert [name for name, _ in received] == ["task.created", "task.updated", "task.completed"]
        assert received[1][1]["previousTask"] == {"task_id": "t1", "status": "pending"}
        assert received[2][1]["triggerType"] == "task.completed"

    async def test_exercise_log_defaults_exercise(self, trigger_manager, received):
        await hooks.on_exercise_log_created({"minutes": 30}, manager=trigger_manager)
        name, payload = received[0]
        assert name == "exercise.log.created"
        assert payload["exerciseLog"] == payload["exercise"] == {"minutes": 30}

    async def test_goal_and_journal(self, trigger_manager, received):
        await hooks.on_exercise_goal_achieved({"goal": 3}, {"done": 3}, manager=trigger_manager)
        await hooks.on_journal_entry_created({"mood": 2}, manager=trigger_manager)
        await hooks.on_journal_entry_updated({"mood": 5}, manager=trigger_manager)

        assert received[0][1]["progress"] == {"done": 3}
        assert received[1][1]["journalEntry"] == {"mood": 2}
        assert received[2] == (
            "journal.entry.updated",
            {"journalEntry": {"mood": 5}, "triggerType": "journal.entry.updated"},
        )

    async def test_custom_event(self, trigger_manager, received):
        await hooks.emit_custom_event("habit.streak", {"days": 7}, manager=trigger_manager)
        assert received == [("habit.streak", {"days": 7, "triggerType": "habit.streak"})]

    async def test_custom_event_requires_name(self, trigger_manager):
        with pytest.raises(ValueError):
            await hooks.emit_custom_event("", manager=trigger_manager)

    async def test_default_manager_is_singleton(self):
        reset_trigger_manager()
        seen: list[dict] = []
        get_trigger_manager().on("journal.entry.created", seen.append)
        try:
            await hooks.on_journal_entry_created({"mood": 3})
        finally:
            reset_trigger_manager()
        assert seen[0]["journalEntry"] == {"mood": 3}
