#!/usr/bin/env python3
"""
Run Playback — stored simulation runs rendered with matplotlib
================================================================

Plots the effective energy of a stored run against the engine
thresholds, with each step colored by its calculated state.

Run:
  python -m limit_engine.playback --list
  python -m limit_engine.playback --run 3 --out run3.png
  python -m limit_engine.playback --run 3            # interactive window
"""

import argparse
import os
import sys

# Ensure matplotlib/font caches are writable in restricted environments.
os.environ.setdefault("MPLCONFIGDIR", "/tmp/mplconfig")
os.environ.setdefault("XDG_CACHE_HOME", "/tmp")

import matplotlib
if sys.platform != "darwin" and not os.environ.get("DISPLAY"):
    # Allow non-interactive environments (CI/headless) to import this module.
    matplotlib.use("Agg")
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
import numpy as np

from limit_engine.config import STATE_CATALOG, STATE_ORDER
from limit_engine.engine import EngineConfig, DEFAULT_CONFIG
from limit_engine.storage import DatabaseStorage


# Dark theme colors
BG_COLOR = "#0f172a"       # dark navy background
PANEL_COLOR = "#1e293b"    # slightly lighter panel
TEXT_COLOR = "#e2e8f0"     # light gray text
GRID_COLOR = "#334155"     # subtle grid lines
ACCENT_BLUE = "#38bdf8"    # effective energy line
ACCENT_GRAY = "#94a3b8"    # raw energy line


def step_series(steps):
    """Arrays (index, energy, effective, states) from step dicts, in step order."""
    steps = sorted(steps, key=lambda s: (s["stepIndex"], s.get("id", 0)))
    index = np.array([s["stepIndex"] for s in steps], dtype=float)
    energy = np.array([s["energy"] for s in steps], dtype=float)
    # Older rows may lack the effective value; fall back to the raw reading.
    effective = np.array(
        [s["energy"] if s.get("effectiveEnergy") is None else s["effectiveEnergy"] for s in steps],
        dtype=float,
    )
    states = [s["calculatedState"] for s in steps]
    return index, energy, effective, states


def state_counts(states):
    return {state: states.count(state) for state in STATE_ORDER}


def render_run(run, steps, out_path=None, config: EngineConfig = DEFAULT_CONFIG):
    """
    Draw one run. Saves to out_path when given, otherwise shows a window.
    Returns the matplotlib Figure.
    """
    index, energy, effective, states = step_series(steps)

    fig, ax = plt.subplots(figsize=(12, 5), facecolor=BG_COLOR)
    ax.set_facecolor(PANEL_COLOR)
    ax.tick_params(colors=TEXT_COLOR, labelsize=8)
    ax.grid(True, alpha=0.15, color=GRID_COLOR)
    for spine in ax.spines.values():
        spine.set_color(GRID_COLOR)

    ax.plot(index, energy, color=ACCENT_GRAY, linewidth=1, alpha=0.6, label="Energy")
    ax.plot(index, effective, color=ACCENT_BLUE, linewidth=1.5, label="Effective Energy")
    if len(index):
        colors = [STATE_CATALOG[s]["color"] for s in states]
        ax.scatter(index, effective, c=colors, s=14, zorder=3)

    # Threshold lines
    for limit, state in (
        (config.stable_limit, "BOUNDARY_ZONE"),
        (config.boundary_limit, "UNSTABLE"),
        (config.halt_limit, "SYSTEM_SHOULD_HALT"),
    ):
        ax.axhline(y=limit, color=STATE_CATALOG[state]["color"], linewidth=0.8,
                   linestyle=":", alpha=0.7)

    ax.set_title(f"Run #{run['id']}: {run['name']}", color=TEXT_COLOR,
                 fontsize=11, fontweight="bold", pad=8)
    ax.set_xlabel("Step", color=TEXT_COLOR, fontsize=9)
    ax.set_ylabel("Energy", color=ACCENT_BLUE, fontsize=9)

    handles, _ = ax.get_legend_handles_labels()
    handles += [mpatches.Patch(color=STATE_CATALOG[s]["color"], label=STATE_CATALOG[s]["label"])
                for s in STATE_ORDER]
    ax.legend(handles=handles, loc="upper left", fontsize=7, framealpha=0.3)
    fig.tight_layout()

    if out_path:
        fig.savefig(out_path, facecolor=BG_COLOR)
    else:
        plt.show()
    return fig


def print_runs(storage):
    runs = storage.get_runs()
    if not runs:
        print("No runs stored")
        return

    print("  id | created             | steps | name")
    print("-" * 70)
    for r in runs:
        created = (r["createdAt"] or "")[:19].replace("T", " ")
        print(f"{r['id']:>4} | {created:<19} | {storage.count_steps(r['id']):>5} | {r['name']}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Render a stored simulation run")
    parser.add_argument("--db", type=str, default=None,
                        help="Database URL or path (default: $DATABASE_URL or ./sqlite.db)")
    parser.add_argument("--list", action="store_true", help="List stored runs and exit")
    parser.add_argument("--run", type=int, help="Run id to render")
    parser.add_argument("--out", type=str, default=None, help="Write a PNG instead of opening a window")
    args = parser.parse_args(argv)

    storage = DatabaseStorage(args.db)
    storage.init_db()

    if args.list or args.run is None:
        print_runs(storage)
        return 0

    run = storage.get_run(args.run)
    if run is None:
        print(f"Run not found: {args.run}")
        return 1

    steps = storage.get_run_steps(args.run)
    counts = state_counts([s["calculatedState"] for s in steps])
    print(f"Run #{run['id']} '{run['name']}': {len(steps)} steps | "
          + " | ".join(f"{k}={v}" for k, v in counts.items()))
    render_run(run, steps, out_path=args.out)
    if args.out:
        print(f"Saved {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
