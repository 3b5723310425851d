import pytest

from spamguard.services.whitelist import DatabaseWhitelist, StaticWhitelist


class _FakeSession:
    def __init__(self):
        self.statements = []
        self.commits = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, stmt):
        self.statements.append(stmt)

    async def commit(self):
        self.commits += 1


class _CountingWhitelist(DatabaseWhitelist):
    """Stands in for the table lookup so the cache can be observed."""

    def __init__(self, allowed, session_maker=None, **kwargs):
        super().__init__(session_maker=session_maker, **kwargs)
        self.allowed = set(allowed)
        self.lookups = []

    async def _lookup(self, chat_id):
        self.lookups.append(chat_id)
        return chat_id in self.allowed


@pytest.mark.asyncio
async def test_static_whitelist():
    whitelist = StaticWhitelist.from_ids([-1, -2])

    assert await whitelist.is_whitelisted(-1)
    assert not await whitelist.is_whitelisted(-3)


@pytest.mark.asyncio
async def test_database_whitelist_caches_lookups():
    whitelist = _CountingWhitelist({-10})

    assert await whitelist.is_whitelisted(-10)
    assert await whitelist.is_whitelisted(-10)
    assert not await whitelist.is_whitelisted(-11)
    assert not await whitelist.is_whitelisted(-11)

    assert whitelist.lookups == [-10, -11]


@pytest.mark.asyncio
async def test_database_whitelist_cache_expires():
    whitelist = _CountingWhitelist({-10}, cache_ttl=0)

    await whitelist.is_whitelisted(-10)
    await whitelist.is_whitelisted(-10)

    assert whitelist.lookups == [-10, -10]


@pytest.mark.asyncio
async def test_configured_chats_skip_the_database():
    whitelist = _CountingWhitelist(set(), static_ids=frozenset({-20}))

    assert await whitelist.is_whitelisted(-20)
    assert whitelist.lookups == []


@pytest.mark.asyncio
async def test_add_upserts_and_invalidates_cached_answer():
    session = _FakeSession()
    whitelist = _CountingWhitelist(set(), session_maker=lambda: session)
    assert not await whitelist.is_whitelisted(-30)

    await whitelist.add(-30, title="Traders")
    whitelist.allowed.add(-30)

    assert await whitelist.is_whitelisted(-30)
    assert whitelist.lookups == [-30, -30]
    assert session.commits == 1
    (stmt,) = session.statements
    assert stmt.table.name == "whitelisted_chats"
