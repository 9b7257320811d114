import pytest

from mysqlpool.core.pool import AsyncConnectionPool

from fakes import FakeFactory, make_config


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
async def make_pool(factory):
    """Build pools on the fake factory and shut them all down afterwards"""
    pools = []

    def _make(**overrides) -> AsyncConnectionPool:
        pool = AsyncConnectionPool(make_config(**overrides), factory)
        pools.append(pool)
        return pool

    yield _make

    for pool in pools:
        await pool.shutdown()
