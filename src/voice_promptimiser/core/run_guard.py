import logging
from contextlib import asynccontextmanager

from voice_promptimiser.core.errors import RunAlreadyActive

logger = logging.getLogger(__name__)


class RunGuard:
    """Allows at most one optimisation run per agent at a time."""

    def __init__(self):
        self._active: dict[str, str] = {}

    def is_active(self, agent_id: str) -> bool:
        return agent_id in self._active

    @asynccontextmanager
    async def hold(self, agent_id: str, run_id: str):
        if agent_id in self._active:
            logger.warning(f"⛔ Run {run_id} refused: run {self._active[agent_id]} already active for {agent_id}")
            raise RunAlreadyActive(agent_id)
        self._active[agent_id] = run_id
        try:
            yield
        finally:
            self._active.pop(agent_id, None)
