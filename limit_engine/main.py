"""
Limit Behavior Engine — Main Entry Point
==========================================
Wires storage, quota housekeeping, the simulation session and the
dashboard server together.

Uses a threading lock so the session is not ticked by the
dashboard loop and modified by a socket event simultaneously.
"""

import argparse
import os
import signal
import threading
import time

from limit_engine.config import (
    DASHBOARD_HOST, DASHBOARD_PORT, HOUSEKEEPING_INTERVAL,
    MAX_DB_SIZE_BYTES, MAX_RUNS, MAX_STEPS_PER_RUN, TICK_INTERVAL,
    database_url,
)
from limit_engine.dashboard.app import init_dashboard, run_dashboard
from limit_engine.seed import seed_database
from limit_engine.simulator import SimulationSession
from limit_engine.storage import DatabaseStorage
from limit_engine.storage_manager import StorageManager, MemoryLimit


class LimitEngineServer:
    """Server orchestrator owning storage, housekeeping and the live session."""

    def __init__(self, db_url=None, seed=True,
                 housekeeping_interval=HOUSEKEEPING_INTERVAL,
                 max_db_size_bytes=MAX_DB_SIZE_BYTES,
                 max_runs=MAX_RUNS,
                 max_steps_per_run=MAX_STEPS_PER_RUN):
        self.storage = DatabaseStorage(database_url(db_url))
        self.storage.init_db()
        self.storage_manager = StorageManager(
            self.storage,
            max_db_size_bytes=max_db_size_bytes,
            max_runs=max_runs,
            max_steps_per_run=max_steps_per_run,
        )
        self.memory_limit = MemoryLimit(self.storage, max_size_bytes=max_db_size_bytes)
        self.session = SimulationSession(storage=self.storage)
        self.lock = threading.Lock()   # Protects session state

        if seed:
            try:
                seed_database(self.storage)
            except Exception as e:
                print(f"[Seed] Failed to seed database: {e}")

        init_dashboard(self.storage, self.storage_manager, self.memory_limit,
                       self.session, self.lock)

        self.housekeeping_interval = housekeeping_interval
        self._running = False
        self._stop_event = threading.Event()
        self._housekeeping_thread = None

    def start(self, host=DASHBOARD_HOST, port=DASHBOARD_PORT):
        """Start the housekeeping loop and the dashboard."""
        self._running = True

        self._housekeeping_thread = threading.Thread(target=self._housekeeping_loop, daemon=True)
        self._housekeeping_thread.start()

        print()
        print("=" * 60)
        print("  Limit Behavior Engine — Live Simulation Dashboard")
        print(f"  Database: {self.storage.url}")
        print(f"  Tick: {TICK_INTERVAL * 1000:.0f} ms | Housekeeping: every {self.housekeeping_interval:.0f} s")
        print(f"  Dashboard: http://{host}:{port}")
        print()
        print("  Press CTRL+C to stop the server.")
        print("=" * 60)
        print()

        run_dashboard(host=host, port=port)

    def run_housekeeping(self):
        """One quota pass; failures are reported and the loop carries on."""
        try:
            summary = self.storage_manager.enforce_limits()
        except Exception as e:
            print(f"[Storage] Housekeeping failed: {e}")
            return None
        if any(summary.values()):
            print(f"[Storage] Housekeeping: {summary}")
        return summary

    def _housekeeping_loop(self):
        print("[Storage] Housekeeping loop started")
        while self._running:
            loop_start = time.time()
            self.run_housekeeping()
            elapsed = time.time() - loop_start
            wait = self.housekeeping_interval - elapsed
            if wait > 0 and self._stop_event.wait(wait):
                break

    def stop(self):
        self._running = False
        self._stop_event.set()
        if self._housekeeping_thread:
            self._housekeeping_thread.join(timeout=2.0)
        with self.lock:
            self.session.pause()
        self.storage.dispose()
        print("[Server] Stopped.")


def main():
    parser = argparse.ArgumentParser(description='Limit Behavior Engine dashboard server')
    parser.add_argument('--host', default=DASHBOARD_HOST, help='Server host')
    parser.add_argument('--port', type=int, default=DASHBOARD_PORT, help='Server port')
    parser.add_argument('--db', type=str, default=None,
                        help='Database URL or path (default: $DATABASE_URL or ./sqlite.db)')
    parser.add_argument('--no-seed', action='store_true',
                        help='Do not create the demo run on an empty database')
    parser.add_argument('--housekeeping-interval', type=float, default=HOUSEKEEPING_INTERVAL,
                        help='Seconds between storage quota passes')
    args = parser.parse_args()

    server = LimitEngineServer(
        db_url=args.db,
        seed=not args.no_seed,
        housekeeping_interval=args.housekeeping_interval,
    )

    def signal_handler(sig, frame):
        print("\n[Server] Shutting down (CTRL+C)...")
        server.stop()
        os._exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        server.start(host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\n[Server] Shutting down...")
        server.stop()
        os._exit(0)


if __name__ == '__main__':
    main()
