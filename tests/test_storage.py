import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock


ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from limit_engine.config import DEFAULT_RUN_CONFIGURATION, database_url  # noqa: E402
from limit_engine.storage import DatabaseStorage  # noqa: E402


def make_steps(count: int, start: int = 0, state: str = "STABLE") -> list:
    return [
        {
            "stepIndex": i,
            "timestamp": float(i),
            "energy": 0.1 * i,
            "trend": 0.0,
            "noise": 0.1,
            "calculatedState": state,
        }
        for i in range(start, start + count)
    ]


class DatabaseUrlTests(unittest.TestCase):
    def test_forms(self) -> None:
        self.assertEqual(database_url("sqlite:///x.db"), "sqlite:///x.db")
        self.assertEqual(database_url("file:data/x.db"), "sqlite:///data/x.db")
        self.assertEqual(database_url("/tmp/x.db"), "sqlite:////tmp/x.db")

    def test_environment_fallback(self) -> None:
        with mock.patch.dict(os.environ, {"DATABASE_URL": "file:env.db"}):
            self.assertEqual(database_url(), "sqlite:///env.db")
        with mock.patch.dict(os.environ, {"DATABASE_URL": ""}):
            self.assertEqual(database_url(), "sqlite:///sqlite.db")


class DatabaseStorageTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.storage = DatabaseStorage(str(Path(self.tmp.name) / "runs.db"))
        self.storage.init_db()

    def tearDown(self) -> None:
        self.storage.dispose()
        self.tmp.cleanup()

    def create(self, name: str) -> dict:
        return self.storage.create_run(name=name, configuration=DEFAULT_RUN_CONFIGURATION,
                                       description=f"{name} description")

    def test_create_and_get_run(self) -> None:
        run = self.create("Alpha")
        self.assertIsInstance(run["id"], int)
        self.assertIsNotNone(run["createdAt"])

        fetched = self.storage.get_run(run["id"])
        self.assertEqual(fetched["name"], "Alpha")
        self.assertEqual(fetched["description"], "Alpha description")
        self.assertEqual(fetched["configuration"], DEFAULT_RUN_CONFIGURATION)
        self.assertIsNone(self.storage.get_run(9999))

    def test_runs_are_listed_newest_first(self) -> None:
        ids = [self.create(n)["id"] for n in ("a", "b", "c")]
        self.assertEqual([r["id"] for r in self.storage.get_runs()], list(reversed(ids)))
        self.assertEqual(self.storage.oldest_run_ids(limit=2), ids[:2])

    def test_update_only_provided_fields(self) -> None:
        run = self.create("Before")
        updated = self.storage.update_run(run["id"], name="After")
        self.assertEqual(updated["name"], "After")
        self.assertEqual(updated["description"], "Before description")
        self.assertIsNone(self.storage.update_run(424242, name="x"))

    def test_steps_round_trip_in_step_order(self) -> None:
        run = self.create("Steps")
        steps = make_steps(3)
        steps.reverse()
        self.assertEqual(self.storage.add_steps(run["id"], steps), 3)
        self.assertEqual(self.storage.add_steps(run["id"], []), 0)

        stored = self.storage.get_run_steps(run["id"])
        self.assertEqual([s["stepIndex"] for s in stored], [0, 1, 2])
        self.assertEqual(stored[0]["runId"], run["id"])
        self.assertIsNone(stored[0]["effectiveEnergy"])
        self.assertEqual(self.storage.count_steps(run["id"]), 3)

    def test_delete_run_removes_steps(self) -> None:
        keep = self.create("keep")
        drop = self.create("drop")
        self.storage.add_steps(keep["id"], make_steps(2))
        self.storage.add_steps(drop["id"], make_steps(4))

        self.assertTrue(self.storage.delete_run(drop["id"]))
        self.assertFalse(self.storage.delete_run(drop["id"]))
        self.assertEqual(self.storage.count_runs(), 1)
        self.assertEqual(self.storage.count_steps(), 2)

    def test_step_limits_helpers(self) -> None:
        big = self.create("big")
        small = self.create("small")
        self.storage.add_steps(big["id"], make_steps(8))
        self.storage.add_steps(small["id"], make_steps(2))

        self.assertEqual(self.storage.step_counts_over(5), [(big["id"], 8)])
        self.assertEqual(self.storage.delete_oldest_steps(big["id"], 3), 3)
        remaining = [s["stepIndex"] for s in self.storage.get_run_steps(big["id"])]
        self.assertEqual(remaining, [3, 4, 5, 6, 7])
        self.assertEqual(self.storage.delete_oldest_steps(big["id"], 0), 0)

    def test_size_reporting(self) -> None:
        run = self.create("size")
        self.storage.add_steps(run["id"], make_steps(50))
        self.assertGreater(self.storage.used_bytes(), 0)
        self.assertGreater(self.storage.file_size(), 0)
        self.assertEqual(len(self.storage.get_steps(limit=5)), 5)


if __name__ == "__main__":
    unittest.main()
