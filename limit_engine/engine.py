"""
Limit Behavior Engine — State Evaluator
=========================================
Maps one reading (energy, trend, noise) plus the previous state to
a new discrete state, the effective energy that was classified,
and a diagnostic string.

Stateless and side-effect free: any number of callers may evaluate
concurrently. Sequencing ticks of one run is the caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any

from limit_engine.config import (
    SystemState, STATE_ORDER, INITIAL_STATE,
    STABLE_LIMIT, BOUNDARY_LIMIT, HALT_LIMIT, HYSTERESIS_BUFFER,
    TREND_FACTOR, NOISE_FACTOR,
)


DETAIL_SUFFIX = {
    SystemState.SYSTEM_SHOULD_HALT: " - CRITICAL LIMIT BREACH",
    SystemState.UNSTABLE: " - High Instability Detected",
    SystemState.BOUNDARY_ZONE: " - Approaching Limits",
    SystemState.STABLE: " - System Nominal",
}


@dataclass(frozen=True)
class EngineConfig:
    stable_limit: float = STABLE_LIMIT
    boundary_limit: float = BOUNDARY_LIMIT
    halt_limit: float = HALT_LIMIT
    hysteresis_buffer: float = HYSTERESIS_BUFFER
    trend_factor: float = TREND_FACTOR
    noise_factor: float = NOISE_FACTOR

    def validate(self) -> "EngineConfig":
        if not (self.stable_limit < self.boundary_limit < self.halt_limit):
            raise ValueError(
                "thresholds must satisfy stable_limit < boundary_limit < halt_limit, "
                f"got {self.stable_limit}, {self.boundary_limit}, {self.halt_limit}"
            )
        if self.hysteresis_buffer < 0:
            raise ValueError(f"hysteresis_buffer must be >= 0, got {self.hysteresis_buffer}")
        return self

    def as_run_configuration(self, max_energy: float = 1.5) -> dict[str, float]:
        """Shape stored in a run's configuration column."""
        return {
            "maxEnergy": max_energy,
            "boundaryThreshold": self.boundary_limit,
            "haltThreshold": self.halt_limit,
        }


DEFAULT_CONFIG = EngineConfig()


@dataclass(frozen=True)
class EvaluationResult:
    state: str
    effective_energy: float
    details: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "effectiveEnergy": self.effective_energy,
            "details": self.details,
        }


def severity(state: str) -> int:
    """Position of a state in the severity order (STABLE = 0)."""
    return STATE_ORDER.index(state)


def is_state(value: Any) -> bool:
    return value in STATE_ORDER


def effective_energy(energy: float, trend: float, noise: float,
                     config: EngineConfig = DEFAULT_CONFIG) -> float:
    """Worst-case projection: trend look-ahead plus full noise magnitude."""
    return energy + trend * config.trend_factor + abs(noise) * config.noise_factor


def classify(value: float, config: EngineConfig = DEFAULT_CONFIG) -> str:
    """Raw band lookup; each band includes its lower bound. NaN falls through to STABLE."""
    if value >= config.halt_limit:
        return SystemState.SYSTEM_SHOULD_HALT
    if value >= config.boundary_limit:
        return SystemState.UNSTABLE
    if value >= config.stable_limit:
        return SystemState.BOUNDARY_ZONE
    return SystemState.STABLE


def apply_hysteresis(raw_state: str, value: float, previous_state: str | None,
                     config: EngineConfig = DEFAULT_CONFIG) -> str:
    """
    Damp a one-level downward move while the value is still within
    the buffer of the threshold just crossed.

    Only UNSTABLE → BOUNDARY_ZONE and BOUNDARY_ZONE → STABLE are held.
    Upward moves, two-level drops and any exit from SYSTEM_SHOULD_HALT
    pass through unchanged.
    """
    if not previous_state or previous_state == SystemState.STABLE:
        return raw_state

    if (previous_state == SystemState.UNSTABLE
            and raw_state == SystemState.BOUNDARY_ZONE
            and value > config.boundary_limit - config.hysteresis_buffer):
        return SystemState.UNSTABLE

    if (previous_state == SystemState.BOUNDARY_ZONE
            and raw_state == SystemState.STABLE
            and value > config.stable_limit - config.hysteresis_buffer):
        return SystemState.BOUNDARY_ZONE

    return raw_state


def format_details(energy: float, value: float, state: str) -> str:
    return f"Energy: {energy:.2f} | Eff: {value:.2f}" + DETAIL_SUFFIX[state]


def evaluate(energy: float, trend: float, noise: float,
             previous_state: str | None = None,
             config: EngineConfig | None = None) -> EvaluationResult:
    """
    Evaluate one tick.

    Args:
        energy: Raw reading.
        trend: Signed rate-of-change bias.
        noise: Uncertainty magnitude; the sign is ignored.
        previous_state: State returned for the prior tick, or None on
            the first tick of a sequence.
        config: Thresholds and factors; defaults to the module constants.

    Non-finite inputs are not rejected. A NaN effective energy fails
    every comparison and comes back as STABLE, so callers that accept
    untrusted numbers must validate them first.
    """
    config = config or DEFAULT_CONFIG
    value = effective_energy(energy, trend, noise, config)
    raw_state = classify(value, config)
    state = apply_hysteresis(raw_state, value, previous_state, config)
    return EvaluationResult(
        state=state,
        effective_energy=value,
        details=format_details(energy, value, state),
    )


def evaluate_sequence(readings, initial_state: str | None = INITIAL_STATE,
                      config: EngineConfig | None = None) -> list[EvaluationResult]:
    """Evaluate (energy, trend, noise) tuples in order, threading the state through."""
    results = []
    previous = initial_state
    for energy, trend, noise in readings:
        result = evaluate(energy, trend, noise, previous, config)
        results.append(result)
        previous = result.state
    return results


def config_to_dict(config: EngineConfig) -> dict[str, float]:
    return asdict(config)
