from abc import ABC, abstractmethod

from voice_promptimiser.core.errors import AuditViolation
from voice_promptimiser.core.optimisation_entities import (
    BestPromptRecord,
    OptimisationRecord,
    OptimisationStatus,
)


class BaseRecordStorage(ABC):
    """Abstract base class for optimisation audit records and best-prompt records.

    Implementations must reject, with AuditViolation:
      - deleting a record whose status is `applied`
      - saving a status change that skips the transition table
      - upserting a best-prompt record with a lower score than the stored one
    """

    @abstractmethod
    async def save_record(self, record: OptimisationRecord) -> None:
        """Insert or update an audit record."""
        pass

    @abstractmethod
    async def get_record(self, record_id: str) -> OptimisationRecord | None:
        pass

    @abstractmethod
    async def list_records(self, agent_id: str) -> list[OptimisationRecord]:
        pass

    @abstractmethod
    async def delete_record(self, record_id: str) -> None:
        pass

    @abstractmethod
    async def get_best(self, agent_id: str) -> BestPromptRecord | None:
        pass

    @abstractmethod
    async def upsert_best(self, record: BestPromptRecord) -> None:
        pass

    @abstractmethod
    async def delete_best(self, agent_id: str) -> bool:
        """Remove the best-prompt record. Returns False when there was none."""
        pass

    @staticmethod
    def check_transition(existing: OptimisationRecord | None, record: OptimisationRecord) -> None:
        if existing is None:
            if record.status != OptimisationStatus.PENDING:
                raise AuditViolation(f"New record {record.id} must start as pending, got {record.status.value}")
            return
        if existing.status != record.status and not existing.can_advance_to(record.status):
            raise AuditViolation(
                f"Invalid status transition for record {record.id}: "
                f"{existing.status.value} -> {record.status.value}"
            )

    @staticmethod
    def check_deletable(record: OptimisationRecord) -> None:
        if not record.is_deletable:
            raise AuditViolation(f"Record {record.id} is applied and cannot be deleted")

    @staticmethod
    def check_best_score(existing: BestPromptRecord | None, record: BestPromptRecord) -> None:
        if existing is not None and record.score < existing.score:
            raise AuditViolation(
                f"Refusing to regress best score for agent {record.agent_id}: "
                f"{existing.score:.4f} -> {record.score:.4f}"
            )
