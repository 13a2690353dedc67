from __future__ import annotations

from media_vault.repositories.event import (
    ASSET_TRASH,
    KNOWN_EVENTS,
    EventRepository,
    default_event_table,
)


def test_handlers_run_in_registration_order() -> None:
    calls: list[str] = []
    repository = EventRepository(
        {
            ASSET_TRASH: [
                lambda payload: calls.append(f"first:{payload['asset_id']}"),
                lambda payload: calls.append(f"second:{payload['asset_id']}"),
            ]
        }
    )

    repository.emit(ASSET_TRASH, {"asset_id": "a1"})

    assert calls == ["first:a1", "second:a1"]


def test_failing_handler_does_not_stop_others() -> None:
    calls: list[str] = []

    def broken(payload) -> None:
        raise RuntimeError("subscriber down")

    repository = EventRepository({ASSET_TRASH: [broken, lambda payload: calls.append("after")]})

    repository.emit(ASSET_TRASH, {"asset_id": "a1"})

    assert calls == ["after"]


def test_unknown_event_is_ignored() -> None:
    EventRepository({}).emit("Nope", {})


def test_default_table_covers_known_events() -> None:
    table = default_event_table()

    assert set(table) == set(KNOWN_EVENTS)
    EventRepository().emit(ASSET_TRASH, {"asset_id": "a1", "user_id": "u1"})
