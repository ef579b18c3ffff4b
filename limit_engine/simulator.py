"""
Limit Behavior Engine — Simulation Session
============================================
Drives the evaluator tick by tick: the energy reading drifts with
the trend and jitters with the noise, each tick is classified with
the previous tick's state, and steps are persisted to the run.

A SYSTEM_SHOULD_HALT result stops the session. Only reset() clears
the halt; the evaluator itself never recovers out of it.
"""

import time
from collections import deque
from typing import Dict, Optional

import numpy as np

from limit_engine.config import (
    SystemState, INITIAL_STATE,
    DRIFT_FACTOR, JITTER_FACTOR, LIVE_HISTORY_LEN,
    DEFAULT_ENERGY, DEFAULT_TREND, DEFAULT_NOISE, PARAM_RANGES,
)
from limit_engine.engine import EngineConfig, DEFAULT_CONFIG, evaluate


class SimulationHalted(Exception):
    """Raised when ticking a session that already reached SYSTEM_SHOULD_HALT."""


class NoActiveRun(Exception):
    """Raised when saving a session that never produced a run."""


def clamp_param(name: str, value: float) -> float:
    rng = PARAM_RANGES[name]
    return float(np.clip(float(value), rng['min'], rng['max']))


class SimulationSession:
    """One live simulation: parameters, state, rolling history and run binding."""

    def __init__(self, storage=None, config: Optional[EngineConfig] = None,
                 seed: Optional[int] = None, clock=time.time):
        self.storage = storage
        self.config = (config or DEFAULT_CONFIG).validate()
        self._rng = np.random.default_rng(seed)
        self._clock = clock
        self.history = deque(maxlen=LIVE_HISTORY_LEN)
        self.run_name: Optional[str] = None
        self._reset_state()

    def _reset_state(self):
        self.energy = DEFAULT_ENERGY
        self.trend = DEFAULT_TREND
        self.noise = DEFAULT_NOISE
        self.current_state = INITIAL_STATE
        self.step_index = 0
        self.run_id: Optional[int] = None
        self.is_running = False
        self.halted = False
        self.drift = 0.0
        self.history.clear()

    # ── Controls ────────────────────────────────────────────

    def set_parameters(self, energy=None, trend=None, noise=None) -> Dict:
        if energy is not None:
            self.energy = clamp_param('energy', energy)
        if trend is not None:
            self.trend = clamp_param('trend', trend)
        if noise is not None:
            self.noise = clamp_param('noise', noise)
        return {'energy': self.energy, 'trend': self.trend, 'noise': self.noise}

    def start(self, name: Optional[str] = None):
        if self.halted:
            raise SimulationHalted("Session halted; reset before starting again")
        if name:
            self.run_name = name
        self.is_running = True

    def pause(self):
        self.is_running = False

    def reset(self):
        self._reset_state()
        self.run_name = None

    def save(self, name: Optional[str] = None) -> Dict:
        """Rename the persisted run, then reset for the next simulation."""
        if self.run_id is None or self.storage is None:
            raise NoActiveRun("Run a simulation first before saving")
        final_name = (name or '').strip() or f"Simulation {time.strftime('%H:%M:%S')}"
        run = self.storage.update_run(self.run_id, name=final_name)
        if run is None:
            # Deleted by housekeeping; the next tick starts a fresh run
            missing, self.run_id = self.run_id, None
            raise NoActiveRun(f"Run {missing} no longer exists")
        steps = len(self.history)
        self.reset()
        return {'run': run, 'steps': steps}

    # ── Tick ────────────────────────────────────────────────

    def next_reading(self) -> float:
        """Energy reading for the next tick: base + accumulated drift + jitter."""
        self.drift += self.trend * DRIFT_FACTOR
        jitter = (self._rng.random() - 0.5) * self.noise * JITTER_FACTOR
        return self.energy + self.drift + jitter

    def tick(self) -> Dict:
        if self.halted:
            raise SimulationHalted("Session halted; reset before ticking again")

        reading = self.next_reading()
        result = evaluate(reading, self.trend, self.noise,
                          previous_state=self.current_state, config=self.config)
        now = self._clock()

        step_index = self.step_index + 1 if self.history else 0

        step = {
            'stepIndex': step_index,
            'timestamp': now,
            'energy': reading,
            'trend': self.trend,
            'noise': self.noise,
            'effectiveEnergy': result.effective_energy,
            'calculatedState': result.state,
        }

        if self.storage is not None:
            if self.run_id is not None and self.storage.get_run(self.run_id) is None:
                print(f"[Sim] Run {self.run_id} was removed from storage; starting a new run")
                self.run_id = None
            if self.run_id is None:
                run = self.storage.create_run(
                    name=self.run_name or f"Run {time.strftime('%H:%M:%S')}",
                    description=f"Max Energy: {self.energy}, Trend: {self.trend}, Noise: {self.noise}",
                    configuration=self.config.as_run_configuration(),
                )
                self.run_id = run['id']
            self.storage.add_steps(self.run_id, [step])

        self.current_state = result.state
        self.step_index = step_index
        self.history.append(step)

        if result.state == SystemState.SYSTEM_SHOULD_HALT:
            self.is_running = False
            self.halted = True

        return {
            **result.to_dict(),
            'step': step,
            'runId': self.run_id,
            'halted': self.halted,
        }

    def snapshot(self) -> Dict:
        return {
            'energy': self.energy,
            'trend': self.trend,
            'noise': self.noise,
            'state': self.current_state,
            'stepIndex': self.step_index,
            'runId': self.run_id,
            'runName': self.run_name,
            'isRunning': self.is_running,
            'halted': self.halted,
            'history': list(self.history),
        }
