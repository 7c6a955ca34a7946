from __future__ import annotations

import pytest

pytest.importorskip("sqlalchemy")

from conftest import make_account
from salesdesk.services.chat.balancer import AdminLoadBalancer


class _DummyLoads:
    def __init__(self, loads):
        self.loads = loads
        self.requested = None

    async def count_active_assignments(self, agent_ids):
        self.requested = list(agent_ids)
        return {k: v for k, v in self.loads.items() if k in agent_ids}


@pytest.mark.asyncio
async def test_picks_agent_with_fewest_active_chats() -> None:
    pool = [make_account("X", "admin"), make_account("Y", "admin"), make_account("Z", "admin")]
    sessions = _DummyLoads({"X": 2, "Z": 1})

    chosen = await AdminLoadBalancer(sessions).pick_least_loaded_agent(pool)

    assert chosen.id == "Y"
    assert sessions.requested == ["X", "Y", "Z"]


@pytest.mark.asyncio
async def test_ties_go_to_first_agent_in_pool() -> None:
    pool = [make_account("B", "admin"), make_account("A", "super_admin")]

    chosen = await AdminLoadBalancer(_DummyLoads({"A": 1, "B": 1})).pick_least_loaded_agent(pool)

    assert chosen.id == "B"


@pytest.mark.asyncio
async def test_empty_pool_returns_none() -> None:
    assert await AdminLoadBalancer(_DummyLoads({})).pick_least_loaded_agent([]) is None


@pytest.mark.asyncio
async def test_support_pool_contains_only_support_capable_accounts(accounts) -> None:
    accounts.add(make_account("boss", "super_admin", minutes=-5))

    pool = await AdminLoadBalancer.support_pool(accounts)

    assert [a.id for a in pool] == ["boss", "admin1"]
