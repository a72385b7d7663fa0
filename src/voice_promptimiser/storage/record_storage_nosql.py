import logging
from pathlib import Path

from tinydb import Query, TinyDB

from voice_promptimiser.core.base_record_storage import BaseRecordStorage
from voice_promptimiser.core.optimisation_entities import BestPromptRecord, OptimisationRecord
from voice_promptimiser.core.prompt_cipher import PlaintextCipher, PromptCipher

logger = logging.getLogger(__name__)


class NoSQLRecordStorage(BaseRecordStorage):
    """TinyDB-based storage for optimisation audit records and best-prompt records.

    Prompt text in audit records (both prompts and the before/after of each change) is
    passed through the cipher on the way in and out.
    """

    def __init__(
        self,
        db_path: str = "optimisation_records.json",
        cipher: PromptCipher | None = None,
        db: TinyDB | None = None,
    ):
        self.db_path = Path(db_path)
        self.db = db if db is not None else TinyDB(self.db_path)
        self.records = self.db.table('optimisation_records')
        self.best_prompts = self.db.table('best_prompts')
        self.cipher = cipher or PlaintextCipher()

    def _encode(self, record: OptimisationRecord) -> dict:
        data = record.to_dict()
        data['original_prompt'] = self.cipher.encrypt(data['original_prompt'])
        data['optimized_prompt'] = self.cipher.encrypt(data['optimized_prompt'])
        for change in data['changes']:
            for key in ('before', 'after'):
                if change.get(key):
                    change[key] = self.cipher.encrypt(change[key])
        return data

    def _decode(self, doc: dict) -> OptimisationRecord:
        data = dict(doc)
        data['original_prompt'] = self.cipher.decrypt(data['original_prompt'])
        data['optimized_prompt'] = self.cipher.decrypt(data['optimized_prompt'])
        data['changes'] = [dict(c) for c in data.get('changes', [])]
        for change in data['changes']:
            for key in ('before', 'after'):
                if change.get(key):
                    change[key] = self.cipher.decrypt(change[key])
        return OptimisationRecord.from_dict(data)

    async def save_record(self, record: OptimisationRecord) -> None:
        RecordQuery = Query()
        doc = self.records.get(RecordQuery.id == record.id)
        existing = self._decode(doc) if doc else None
        self.check_transition(existing, record)

        if doc is None:
            self.records.insert(self._encode(record))
        else:
            self.records.update(self._encode(record), RecordQuery.id == record.id)
        logger.debug(f"Saved optimisation record {record.id} ({record.status.value})")

    async def get_record(self, record_id: str) -> OptimisationRecord | None:
        RecordQuery = Query()
        doc = self.records.get(RecordQuery.id == record_id)
        return self._decode(doc) if doc else None

    async def list_records(self, agent_id: str) -> list[OptimisationRecord]:
        RecordQuery = Query()
        records = [self._decode(doc) for doc in self.records.search(RecordQuery.agent_id == agent_id)]
        return sorted(records, key=lambda r: r.created_at)

    async def delete_record(self, record_id: str) -> None:
        record = await self.get_record(record_id)
        if record is None:
            return
        self.check_deletable(record)
        RecordQuery = Query()
        self.records.remove(RecordQuery.id == record_id)

    async def get_best(self, agent_id: str) -> BestPromptRecord | None:
        BestQuery = Query()
        doc = self.best_prompts.get(BestQuery.agent_id == agent_id)
        return BestPromptRecord.from_dict(doc) if doc else None

    async def upsert_best(self, record: BestPromptRecord) -> None:
        self.check_best_score(await self.get_best(record.agent_id), record)
        BestQuery = Query()
        self.best_prompts.upsert(record.to_dict(), BestQuery.agent_id == record.agent_id)

    async def delete_best(self, agent_id: str) -> bool:
        BestQuery = Query()
        return bool(self.best_prompts.remove(BestQuery.agent_id == agent_id))

    def close(self) -> None:
        self.db.close()
