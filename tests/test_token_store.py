import asyncio
from datetime import timedelta

import pytest

from blogify.models.user import User
from blogify.token_store import token_store
from blogify.utils.security import InvalidTokenError, create_access_token, create_refresh_token


def run(session_factory, scenario):
    async def _run():
        async with session_factory() as session:
            user = User(name="Token Owner", email="owner@example.com", password_hash="x")
            session.add(user)
            await session.flush()
            result = await scenario(session, user.id)
            await session.commit()
            return result

    return asyncio.run(_run())


def test_added_token_is_known(session_factory):
    async def scenario(db, user_id):
        token = create_refresh_token(user_id)
        await token_store.add(db, user_id, token)
        return await token_store.contains(db, user_id, token), await token_store.contains(db, user_id + 1, token)

    assert run(session_factory, scenario) == (True, False)


def test_consume_succeeds_only_once(session_factory):
    async def scenario(db, user_id):
        token = create_refresh_token(user_id)
        await token_store.add(db, user_id, token)
        return await token_store.consume(db, user_id, token), await token_store.consume(db, user_id, token)

    assert run(session_factory, scenario) == (True, False)


def test_unknown_token_cannot_be_consumed(session_factory):
    async def scenario(db, user_id):
        return await token_store.consume(db, user_id, create_refresh_token(user_id))

    assert run(session_factory, scenario) is False


def test_expired_rows_are_not_honoured(session_factory):
    async def scenario(db, user_id):
        # Signature still valid, stored row already past its expiry
        token = create_refresh_token(user_id)
        row = await token_store.add(db, user_id, token)
        row.expires_at = row.expires_at - timedelta(days=30)
        await db.flush()
        return await token_store.contains(db, user_id, token)

    assert run(session_factory, scenario) is False


def test_remove_and_remove_all(session_factory):
    async def scenario(db, user_id):
        first, second, third = (create_refresh_token(user_id) for _ in range(3))
        for token in (first, second, third):
            await token_store.add(db, user_id, token)

        await token_store.remove(db, user_id, first)
        after_remove = [await token_store.contains(db, user_id, t) for t in (first, second, third)]

        await token_store.remove_all(db, user_id)
        after_remove_all = [await token_store.contains(db, user_id, t) for t in (second, third)]
        return after_remove, after_remove_all

    assert run(session_factory, scenario) == ([False, True, True], [False, False])


def test_access_token_is_not_a_refresh_token(session_factory):
    async def scenario(db, user_id):
        with pytest.raises(InvalidTokenError):
            await token_store.add(db, user_id, create_access_token(user_id))

    run(session_factory, scenario)
