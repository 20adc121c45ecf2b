import pytest

from fortune.db.helpers import DatabaseError, with_db_retry


@pytest.mark.asyncio
async def test_recoverable_error_is_retried():
    calls = []

    @with_db_retry(max_retries=2, base_delay=0)
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise DatabaseError("server closed the connection", operation="execute")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_non_recoverable_error_is_raised_at_once():
    calls = []

    @with_db_retry(max_retries=2, base_delay=0)
    async def broken():
        calls.append(1)
        raise DatabaseError("syntax error", operation="execute", recoverable=False)

    with pytest.raises(DatabaseError):
        await broken()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_mark_error_unrecoverable():
    @with_db_retry(max_retries=1, base_delay=0)
    async def down():
        raise DatabaseError("pool timeout", operation="fetch_one")

    with pytest.raises(DatabaseError) as exc_info:
        await down()
    assert exc_info.value.recoverable is False
    assert exc_info.value.operation == "down"
