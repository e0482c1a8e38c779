import unittest
from unittest.mock import MagicMock

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from tripo.core.errors import ConcurrencyConflict, RideNotFound
from tripo.db.transaction import run_in_transaction


class RunInTransactionTests(unittest.TestCase):
    def setUp(self):
        self.sessions = []

        def factory():
            db = MagicMock()
            self.sessions.append(db)
            return db

        self.factory = factory
        self.sleeps = []

    def test_commits_and_returns_result(self):
        result = run_in_transaction(self.factory, lambda db: "ok", sleep=self.sleeps.append)
        self.assertEqual(result, "ok")
        self.sessions[0].commit.assert_called_once()
        self.sessions[0].close.assert_called_once()

    def test_retries_conflicts_with_exponential_backoff(self):
        outcomes = [StaleDataError("stale"), IntegrityError("INSERT", {}, Exception("dup")), "done"]

        def work(db):
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = run_in_transaction(self.factory, work, max_attempts=3, backoff_seconds=0.1, sleep=self.sleeps.append)
        self.assertEqual(result, "done")
        self.assertEqual(self.sleeps, [0.1, 0.2])
        self.assertEqual(len(self.sessions), 3)
        for db in self.sessions[:2]:
            db.rollback.assert_called_once()
        for db in self.sessions:
            db.close.assert_called_once()

    def test_gives_up_with_concurrency_conflict(self):
        def work(db):
            raise StaleDataError("stale")

        with self.assertRaises(ConcurrencyConflict) as ctx:
            run_in_transaction(self.factory, work, max_attempts=3, backoff_seconds=0.05, sleep=self.sleeps.append)
        self.assertIsInstance(ctx.exception.__cause__, StaleDataError)
        self.assertEqual(len(self.sessions), 3)
        self.assertEqual(len(self.sleeps), 2)

    def test_business_errors_are_not_retried(self):
        def work(db):
            raise RideNotFound()

        with self.assertRaises(RideNotFound):
            run_in_transaction(self.factory, work, sleep=self.sleeps.append)
        self.assertEqual(len(self.sessions), 1)
        self.sessions[0].rollback.assert_called_once()
        self.sessions[0].commit.assert_not_called()

    def test_conflict_on_commit_is_retried(self):
        first = MagicMock()
        first.commit.side_effect = StaleDataError("stale")
        second = MagicMock()
        queue = [first, second]
        result = run_in_transaction(lambda: queue.pop(0), lambda db: 42, backoff_seconds=0)
        self.assertEqual(result, 42)
        first.rollback.assert_called_once()
        second.commit.assert_called_once()
