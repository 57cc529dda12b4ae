from contextlib import asynccontextmanager
from datetime import date, datetime, time, timezone
from uuid import uuid4

import pytest

import database


class FakeConnection:
    """Records statements and transaction outcomes like an asyncpg connection would see them."""

    def __init__(self, fail_on=None, status="DELETE 0"):
        self.fail_on = fail_on
        self.status = status
        self.statements = []
        self.events = []

    @asynccontextmanager
    async def transaction(self):
        self.events.append("begin")
        try:
            yield
        except Exception:
            self.events.append("rollback")
            raise
        self.events.append("commit")

    def _run(self, query, args):
        self.statements.append((" ".join(query.split()), args))
        if self.fail_on and self.fail_on in query:
            raise RuntimeError("insert or update on table violates foreign key constraint")

    async def execute(self, query, *args):
        self._run(query, args)
        return self.status

    async def executemany(self, query, args):
        self._run(query, list(args))


class FakePool:
    def __init__(self, conn):
        self.conn = conn
        self.acquired = 0

    @asynccontextmanager
    async def acquire(self):
        self.acquired += 1
        yield self.conn


@pytest.fixture
def conn(monkeypatch):
    connection = FakeConnection()
    monkeypatch.setattr(database.db, "_pool", FakePool(connection))
    return connection


def _plan(user_id):
    task_id = uuid4()
    rows = [{"user_id": user_id, "task_id": task_id, "suggested_start": datetime(2025, 1, 7, 9, tzinfo=timezone.utc),
             "duration_minutes": 60, "score": 0.9, "reason": "Morning", "source": "model"}]
    schedules = [(task_id, date(2025, 1, 7), time(9), "scheduled")]
    return rows, schedules


# ============================================
# SCHEDULE REPLACEMENT
# ============================================

async def test_replace_schedule_runs_in_one_transaction(conn, user_id):
    rows, schedules = _plan(user_id)

    await database.replace_schedule(user_id, rows, schedules)

    assert database.db._pool.acquired == 1
    assert conn.events == ["begin", "commit"]
    kinds = [sql.split()[0] for sql, _ in conn.statements]
    assert kinds == ["DELETE", "INSERT", "UPDATE"]
    assert "outcome IS NULL" in conn.statements[0][0]
    assert conn.statements[2][1] == [(date(2025, 1, 7), time(9), "scheduled", schedules[0][0], user_id)]


async def test_replace_schedule_rolls_back_on_failed_insert(conn, user_id):
    conn.fail_on = "INSERT INTO suggestions"
    rows, schedules = _plan(user_id)

    with pytest.raises(RuntimeError):
        await database.replace_schedule(user_id, rows, schedules)

    assert conn.events == ["begin", "rollback"]
    assert not any(sql.startswith("UPDATE") for sql, _ in conn.statements)


# ============================================
# TRASH PURGE
# ============================================

async def test_user_purge_is_scoped(conn, user_id):
    conn.status = "DELETE 2"

    assert await database.purge_user_trash(user_id, 0) == 2

    sql, args = conn.statements[0]
    assert "user_id = $1" in sql
    assert args == (user_id, 0)


async def test_retention_purge_sweeps_all_users(conn):
    conn.status = "DELETE 7"

    assert await database.purge_all_trash(30) == 7
    assert conn.statements[0][1] == (30,)
