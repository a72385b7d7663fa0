from datetime import datetime, timezone
from pathlib import Path

from tinydb import Query, TinyDB

from voice_promptimiser.core.base_suite_storage import BaseSuiteStorage
from voice_promptimiser.core.suite_entities import SuiteStatus, TestSuite


class NoSQLSuiteStorage(BaseSuiteStorage):
    """TinyDB-based storage for test suites. One document per suite, keyed by suite id."""

    def __init__(self, db_path: str = "test_suites.json", db: TinyDB | None = None):
        self.db_path = Path(db_path)
        self.db = db if db is not None else TinyDB(self.db_path)
        self.table = self.db.table('test_suites')

    async def save_suite(self, suite: TestSuite) -> TestSuite:
        SuiteQuery = Query()
        existing = self.table.get(SuiteQuery.id == suite.id)
        if existing is None:
            self.table.insert(suite.to_dict())
            return suite

        suite.version = existing['version'] + 1
        suite.updated_at = datetime.now(timezone.utc).isoformat()
        self.table.update(suite.to_dict(), SuiteQuery.id == suite.id)
        return suite

    async def get_suite(self, suite_id: str) -> TestSuite | None:
        SuiteQuery = Query()
        doc = self.table.get(SuiteQuery.id == suite_id)
        return TestSuite.from_dict(doc) if doc else None

    async def list_suites(self, agent_id: str, include_archived: bool = False) -> list[TestSuite]:
        SuiteQuery = Query()
        docs = self.table.search(SuiteQuery.agent_id == agent_id)
        suites = [TestSuite.from_dict(doc) for doc in docs]
        if not include_archived:
            suites = [s for s in suites if s.status != SuiteStatus.ARCHIVED]
        return sorted(suites, key=lambda s: s.created_at)

    async def archive_agent_suites(self, agent_id: str) -> int:
        SuiteQuery = Query()
        now = datetime.now(timezone.utc).isoformat()
        updated = self.table.update(
            {'status': SuiteStatus.ARCHIVED.value, 'updated_at': now},
            (SuiteQuery.agent_id == agent_id) & (SuiteQuery.status != SuiteStatus.ARCHIVED.value),
        )
        return len(updated)

    def close(self) -> None:
        self.db.close()
