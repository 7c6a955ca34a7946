from __future__ import annotations

from typing import Optional, Sequence

from salesdesk.core.logging import get_logger
from salesdesk.models.account import Account
from salesdesk.services.chat.roles import SUPPORT_CAPABLE_ROLES
from salesdesk.services.contracts import AccountDirectory, SessionDirectory

logger = get_logger(__name__)


class AdminLoadBalancer:
    """Routes new support chats to the agent with the fewest active chats."""

    def __init__(self, sessions: SessionDirectory):
        self.sessions = sessions

    async def pick_least_loaded_agent(self, pool: Sequence[Account]) -> Optional[Account]:
        """
        Pick the agent with the fewest open/assigned/reopened chats.

        Ties go to the agent that comes first in ``pool``. Pools built by
        :meth:`support_pool` are ordered by account creation, which makes the
        choice deterministic for equal loads.

        Returns None when the pool is empty.
        """
        if not pool:
            return None

        loads = await self.sessions.count_active_assignments([str(agent.id) for agent in pool])

        best: Optional[Account] = None
        best_load = None
        for agent in pool:
            load = loads.get(str(agent.id), 0)
            if best_load is None or load < best_load:
                best, best_load = agent, load

        logger.info(f"Least loaded agent is {best.id} with {best_load} active chats")
        return best

    @staticmethod
    async def support_pool(accounts: AccountDirectory) -> list:
        return list(await accounts.find_accounts_by_role(sorted(SUPPORT_CAPABLE_ROLES)))
