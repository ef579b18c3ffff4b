"""
Limit Behavior Engine — Storage Housekeeping
==============================================
Quota jobs that keep the run/step tables bounded:

  StorageManager  size, run-count and steps-per-run limits
                  (run periodically by the server and after each new run)
  MemoryLimit     keep-latest-run-only cleanup, triggered from the API
"""

from __future__ import annotations

from typing import Any

from limit_engine.config import MAX_DB_SIZE_BYTES, MAX_RUNS, MAX_STEPS_PER_RUN
from limit_engine.storage import DatabaseStorage


class StorageManager:
    """Deletes oldest rows until every configured limit holds."""

    def __init__(self, storage: DatabaseStorage,
                 max_db_size_bytes: int = MAX_DB_SIZE_BYTES,
                 max_runs: int = MAX_RUNS,
                 max_steps_per_run: int = MAX_STEPS_PER_RUN):
        self.storage = storage
        self.max_db_size_bytes = max_db_size_bytes
        self.max_runs = max_runs
        self.max_steps_per_run = max_steps_per_run

    def enforce_limits(self) -> dict[str, int]:
        """Apply size, then run-count, then steps-per-run limits."""
        summary = {
            'runs_deleted_for_size': self._enforce_size_limit(),
            'runs_deleted_for_count': self._enforce_run_count_limit(),
            'steps_deleted': self._enforce_steps_per_run_limit(),
        }
        return summary

    def _enforce_size_limit(self) -> int:
        current_size = self.storage.used_bytes()
        if current_size <= self.max_db_size_bytes:
            return 0

        print(f"[Storage] Database size ({current_size} bytes) exceeds limit "
              f"({self.max_db_size_bytes} bytes)")
        deleted = 0
        for run_id in self.storage.oldest_run_ids():
            self.storage.delete_run(run_id)
            deleted += 1
            if self.storage.used_bytes() <= self.max_db_size_bytes:
                break

        print(f"[Storage] Deleted {deleted} oldest runs to enforce size limit")
        return deleted

    def _enforce_run_count_limit(self) -> int:
        run_count = self.storage.count_runs()
        if run_count <= self.max_runs:
            return 0

        print(f"[Storage] Run count ({run_count}) exceeds limit ({self.max_runs})")
        to_delete = self.storage.oldest_run_ids(limit=run_count - self.max_runs)
        for run_id in to_delete:
            self.storage.delete_run(run_id)

        print(f"[Storage] Deleted {len(to_delete)} oldest runs to enforce count limit")
        return len(to_delete)

    def _enforce_steps_per_run_limit(self) -> int:
        total = 0
        for run_id, step_count in self.storage.step_counts_over(self.max_steps_per_run):
            excess = step_count - self.max_steps_per_run
            deleted = self.storage.delete_oldest_steps(run_id, excess)
            total += deleted
            print(f"[Storage] Deleted {deleted} oldest steps from run {run_id}")
        return total

    def get_storage_stats(self) -> dict[str, int]:
        return {
            'size': self.storage.used_bytes(),
            'runs': self.storage.count_runs(),
            'steps': self.storage.count_steps(),
        }


class MemoryLimit:
    """Keeps only the most recent run; reports usage against a soft cap."""

    def __init__(self, storage: DatabaseStorage, max_size_bytes: int = MAX_DB_SIZE_BYTES):
        self.storage = storage
        self.max_size_bytes = max_size_bytes

    def enforce_memory_limit(self) -> int:
        """
        Delete every run except the newest one.

        Errors are reported and swallowed so a failed cleanup never
        takes a request down with it. Returns the number of runs deleted.
        """
        deleted = 0
        try:
            runs = self.storage.get_runs()   # newest first
            for run in runs[1:]:
                self.storage.delete_run(run['id'])
                deleted += 1
                print(f"[Storage] Deleted run \"{run['name']}\" to keep only latest run")
        except Exception as e:
            print(f"[Storage] Error enforcing memory limit: {e}")
        return deleted

    def get_detailed_stats(self) -> dict[str, Any]:
        current = self.storage.used_bytes()
        usage = (current / self.max_size_bytes * 100.0) if self.max_size_bytes else 0.0
        return {
            'currentSize': current,
            'maxSize': self.max_size_bytes,
            'usagePercent': usage,
            'runCount': self.storage.count_runs(),
            'stepCount': self.storage.count_steps(),
        }
