import pytest

from ingestor.locks import ProjectLocks


@pytest.mark.asyncio
async def test_second_holder_is_refused():
    locks = ProjectLocks()

    async with locks.hold("p1") as first:
        async with locks.hold("p1") as second:
            assert first is True
            assert second is False
        assert locks.is_held("p1")

    assert not locks.is_held("p1")


@pytest.mark.asyncio
async def test_projects_are_independent():
    locks = ProjectLocks()

    async with locks.hold("p1") as a, locks.hold("p2") as b:
        assert a and b


@pytest.mark.asyncio
async def test_released_on_error():
    locks = ProjectLocks()

    with pytest.raises(RuntimeError):
        async with locks.hold("p1"):
            raise RuntimeError("boom")

    async with locks.hold("p1") as acquired:
        assert acquired
