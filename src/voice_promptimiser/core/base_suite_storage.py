from abc import ABC, abstractmethod

from voice_promptimiser.core.suite_entities import TestSuite


class BaseSuiteStorage(ABC):
    """Abstract base class for storing test suites."""

    @abstractmethod
    async def save_suite(self, suite: TestSuite) -> TestSuite:
        """Insert a new suite, or re-save an existing one with its version incremented."""
        pass

    @abstractmethod
    async def get_suite(self, suite_id: str) -> TestSuite | None:
        pass

    @abstractmethod
    async def list_suites(self, agent_id: str, include_archived: bool = False) -> list[TestSuite]:
        """Suites for an agent, oldest first."""
        pass

    @abstractmethod
    async def archive_agent_suites(self, agent_id: str) -> int:
        """Archive every non-archived suite for the agent. Returns how many were archived."""
        pass

    async def get_latest_suite(self, agent_id: str) -> TestSuite | None:
        suites = await self.list_suites(agent_id)
        return suites[-1] if suites else None
