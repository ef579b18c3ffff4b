import math
import sys
import unittest
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from limit_engine.config import SystemState, STATE_ORDER  # noqa: E402
from limit_engine.engine import (  # noqa: E402
    EngineConfig, evaluate, evaluate_sequence, classify, severity,
)

STABLE = SystemState.STABLE
BOUNDARY = SystemState.BOUNDARY_ZONE
UNSTABLE = SystemState.UNSTABLE
HALT = SystemState.SYSTEM_SHOULD_HALT


def expected_band(value: float) -> str:
    if value >= 1.0:
        return HALT
    if value >= 0.85:
        return UNSTABLE
    if value >= 0.6:
        return BOUNDARY
    return STABLE


class EffectiveEnergyTests(unittest.TestCase):
    def test_formula_adds_half_trend_and_half_noise_magnitude(self) -> None:
        for energy, trend, noise in [
            (0.5, 0.2, 0.1),
            (0.5, -0.4, 0.3),
            (1.2, 0.0, -0.6),
            (0.0, -0.5, 0.0),
        ]:
            result = evaluate(energy, trend, noise)
            self.assertAlmostEqual(
                result.effective_energy, energy + trend * 0.5 + abs(noise) * 0.5, places=12,
            )

    def test_negative_noise_counts_as_magnitude(self) -> None:
        self.assertEqual(
            evaluate(0.4, 0.1, -0.3).effective_energy,
            evaluate(0.4, 0.1, 0.3).effective_energy,
        )

    def test_end_to_end_scenario(self) -> None:
        result = evaluate(0.2, 0.1, 0.05, previous_state=STABLE)
        self.assertAlmostEqual(result.effective_energy, 0.275, places=12)
        self.assertEqual(result.state, STABLE)
        self.assertEqual(result.details, "Energy: 0.20 | Eff: 0.28 - System Nominal")

    def test_repeated_calls_are_identical(self) -> None:
        first = evaluate(0.81, 0.07, 0.12, previous_state=UNSTABLE)
        for _ in range(10):
            self.assertEqual(evaluate(0.81, 0.07, 0.12, previous_state=UNSTABLE), first)


class ClassificationTests(unittest.TestCase):
    def test_sweep_matches_band_table(self) -> None:
        for i in range(-1000, 2001):
            value = i / 1000.0
            result = evaluate(value, 0.0, 0.0)
            self.assertIn(result.state, STATE_ORDER)
            self.assertEqual(result.state, expected_band(value), msg=f"value={value}")

    def test_lower_bounds_are_inclusive(self) -> None:
        self.assertEqual(evaluate(0.6, 0.0, 0.0).state, BOUNDARY)
        self.assertEqual(evaluate(0.85, 0.0, 0.0).state, UNSTABLE)
        self.assertEqual(evaluate(1.0, 0.0, 0.0).state, HALT)

    def test_just_below_each_bound(self) -> None:
        self.assertEqual(classify(math.nextafter(0.6, 0.0)), STABLE)
        self.assertEqual(classify(math.nextafter(0.85, 0.0)), BOUNDARY)
        self.assertEqual(classify(math.nextafter(1.0, 0.0)), UNSTABLE)

    def test_details_suffix_per_state(self) -> None:
        self.assertTrue(evaluate(0.1, 0, 0).details.endswith(" - System Nominal"))
        self.assertTrue(evaluate(0.7, 0, 0).details.endswith(" - Approaching Limits"))
        self.assertTrue(evaluate(0.9, 0, 0).details.endswith(" - High Instability Detected"))
        self.assertTrue(evaluate(1.3, 0, 0).details.endswith(" - CRITICAL LIMIT BREACH"))
        self.assertEqual(evaluate(1.3, 0, 0).details, "Energy: 1.30 | Eff: 1.30 - CRITICAL LIMIT BREACH")

    def test_severity_order(self) -> None:
        self.assertEqual([severity(s) for s in (STABLE, BOUNDARY, UNSTABLE, HALT)], [0, 1, 2, 3])


class HysteresisTests(unittest.TestCase):
    def test_unstable_sticks_within_buffer(self) -> None:
        self.assertEqual(evaluate(0.8, 0.0, 0.0, previous_state=UNSTABLE).state, UNSTABLE)

    def test_unstable_releases_below_buffer(self) -> None:
        self.assertEqual(evaluate(0.74, 0.0, 0.0, previous_state=UNSTABLE).state, BOUNDARY)

    def test_boundary_sticks_within_buffer(self) -> None:
        result = evaluate(0.55, 0.0, 0.0, previous_state=BOUNDARY)
        self.assertEqual(result.state, BOUNDARY)
        self.assertTrue(result.details.endswith(" - Approaching Limits"))

    def test_boundary_releases_below_buffer(self) -> None:
        self.assertEqual(evaluate(0.45, 0.0, 0.0, previous_state=BOUNDARY).state, STABLE)

    def test_no_damping_on_upward_moves(self) -> None:
        self.assertEqual(evaluate(1.2, 0.0, 0.0, previous_state=STABLE).state, HALT)
        self.assertEqual(evaluate(0.9, 0.0, 0.0, previous_state=BOUNDARY).state, UNSTABLE)

    def test_halt_has_no_self_recovery_rule(self) -> None:
        self.assertEqual(evaluate(0.1, 0.0, 0.0, previous_state=HALT).state, STABLE)
        self.assertEqual(evaluate(0.95, 0.0, 0.0, previous_state=HALT).state, UNSTABLE)

    def test_two_level_drop_is_not_damped(self) -> None:
        self.assertEqual(evaluate(0.55, 0.0, 0.0, previous_state=UNSTABLE).state, STABLE)

    def test_absent_previous_state_applies_no_hysteresis(self) -> None:
        self.assertEqual(evaluate(0.8, 0.0, 0.0).state, BOUNDARY)
        self.assertEqual(evaluate(0.8, 0.0, 0.0, previous_state=None).state, BOUNDARY)

    def test_sequence_threads_state(self) -> None:
        results = evaluate_sequence([(0.9, 0, 0), (0.8, 0, 0), (0.7, 0, 0), (0.55, 0, 0), (0.4, 0, 0)])
        self.assertEqual(
            [r.state for r in results],
            [UNSTABLE, UNSTABLE, BOUNDARY, BOUNDARY, STABLE],
        )


class ConfigTests(unittest.TestCase):
    def test_custom_thresholds(self) -> None:
        cfg = EngineConfig(stable_limit=0.3, boundary_limit=0.5, halt_limit=0.7)
        self.assertEqual(evaluate(0.6, 0.0, 0.0, config=cfg).state, UNSTABLE)
        self.assertEqual(evaluate(0.7, 0.0, 0.0, config=cfg).state, HALT)

    def test_custom_buffer(self) -> None:
        cfg = EngineConfig(hysteresis_buffer=0.2)
        self.assertEqual(evaluate(0.7, 0.0, 0.0, previous_state=UNSTABLE, config=cfg).state, UNSTABLE)
        self.assertEqual(evaluate(0.7, 0.0, 0.0, previous_state=UNSTABLE).state, BOUNDARY)

    def test_validate_rejects_unordered_thresholds(self) -> None:
        with self.assertRaises(ValueError):
            EngineConfig(stable_limit=0.9, boundary_limit=0.85).validate()
        with self.assertRaises(ValueError):
            EngineConfig(hysteresis_buffer=-0.1).validate()
        self.assertEqual(EngineConfig().validate(), EngineConfig())


class NonFiniteInputTests(unittest.TestCase):
    def test_nan_falls_through_to_stable(self) -> None:
        result = evaluate(float("nan"), 0.0, 0.0)
        self.assertTrue(math.isnan(result.effective_energy))
        self.assertEqual(result.state, STABLE)
        self.assertIn("nan", result.details)

    def test_nan_ignores_hysteresis(self) -> None:
        self.assertEqual(evaluate(0.5, float("nan"), 0.0, previous_state=UNSTABLE).state, STABLE)

    def test_infinities(self) -> None:
        self.assertEqual(evaluate(float("inf"), 0.0, 0.0).state, HALT)
        self.assertEqual(evaluate(0.0, 0.0, float("-inf")).state, HALT)
        self.assertEqual(evaluate(float("-inf"), 0.0, 0.0).state, STABLE)


if __name__ == "__main__":
    unittest.main()
