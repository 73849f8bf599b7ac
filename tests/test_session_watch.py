from app.schemas import TableSession, TableStatus
from app.services.session_watch import TableSessionWatcher

CLOSING = {4: TableSession(table_id=4, status=TableStatus.CLOSING_REQUESTED, payment_method="PIX")}


def test_absent_from_the_start_is_not_ended():
    watcher = TableSessionWatcher(4)

    state = watcher.observe({})

    assert state.status == TableStatus.OPEN
    assert state.session_ended is False


def test_closing_then_absent_ends_the_session():
    watcher = TableSessionWatcher(4)

    assert watcher.observe(CLOSING).session_ended is False
    state = watcher.observe({})

    assert state.session_ended is True
    assert state.model_dump(mode="json") == {"table_id": 4, "status": "OPEN", "session_ended": True}


def test_ended_is_sticky():
    watcher = TableSessionWatcher(4)
    watcher.observe(CLOSING)
    watcher.observe({})

    assert watcher.observe({}).session_ended is True
    assert watcher.observe(CLOSING).session_ended is True


def test_other_tables_are_ignored():
    watcher = TableSessionWatcher(7)

    watcher.observe(CLOSING)

    assert watcher.observe({}).session_ended is False
