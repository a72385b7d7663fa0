from datetime import datetime, timezone
from pathlib import Path

from tinydb import Query, TinyDB

from voice_promptimiser.core.base_eval_storage import BaseEvalStorage
from voice_promptimiser.core.eval_entities import BatchResult, Evaluation


class NoSQLEvalStorage(BaseEvalStorage):
    """TinyDB-based implementation of evaluation history.

    Each evaluation is stored as its own document with a timestamp. Evaluations are never
    updated; re-running a test case in the same iteration supersedes the earlier one on read.
    """

    def __init__(self, db_path: str = "evaluations.json", db: TinyDB | None = None):
        """
        Args:
            db_path: Path to the TinyDB JSON file. Ignored when an open `db` is passed in.
            db: Share an already open database with other storages.
        """
        self.db_path = Path(db_path)
        self.db = db if db is not None else TinyDB(self.db_path)
        self.table = self.db.table('evaluations')

    async def store_iteration_results(
        self,
        run_id: str,
        iteration_number: int,
        batch: BatchResult,
        suite_id: str | None = None,
    ) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        self.table.insert_multiple(
            {
                'run_id': run_id,
                'iteration_number': iteration_number,
                'suite_id': suite_id,
                'test_case_id': evaluation.test_case_id,
                'timestamp': timestamp,
                'result': evaluation.to_dict(),
            }
            for evaluation in batch.evaluations
        )

    @staticmethod
    def _latest_per_test_case(documents: list[dict]) -> list[Evaluation]:
        latest: dict[str, tuple[str, dict]] = {}
        for doc in documents:
            test_case_id = doc['test_case_id']
            if test_case_id not in latest or doc['timestamp'] >= latest[test_case_id][0]:
                latest[test_case_id] = (doc['timestamp'], doc['result'])
        return [Evaluation.from_dict(result) for _, result in latest.values()]

    async def get_run_results(self, run_id: str) -> list[tuple[int, list[Evaluation]]]:
        """For each iteration, the latest evaluation of each test case."""
        EvalQuery = Query()
        documents = self.table.search(EvalQuery.run_id == run_id)

        by_iteration: dict[int, list[dict]] = {}
        for doc in documents:
            by_iteration.setdefault(doc['iteration_number'], []).append(doc)

        return [
            (iteration, self._latest_per_test_case(docs))
            for iteration, docs in sorted(by_iteration.items())
        ]

    async def get_iteration_results(self, run_id: str, iteration_number: int) -> list[Evaluation] | None:
        EvalQuery = Query()
        documents = self.table.search(
            (EvalQuery.run_id == run_id) &
            (EvalQuery.iteration_number == iteration_number)
        )
        if not documents:
            return None
        return self._latest_per_test_case(documents)

    async def list_run_ids(self, suite_id: str) -> list[str]:
        EvalQuery = Query()
        seen: dict[str, None] = {}
        for doc in self.table.search(EvalQuery.suite_id == suite_id):
            seen.setdefault(doc['run_id'], None)
        return list(seen)

    def close(self) -> None:
        self.db.close()

    def clear_run(self, run_id: str) -> None:
        EvalQuery = Query()
        self.table.remove(EvalQuery.run_id == run_id)
