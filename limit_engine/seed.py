"""Demo data for an empty database."""

from limit_engine.config import SystemState, DEFAULT_RUN_CONFIGURATION
from limit_engine.engine import evaluate

DEMO_RUN_NAME = "Demo Calibration Run"
DEMO_STEPS = 20
DEMO_TREND = 0.1
DEMO_NOISE = 0.05


def demo_steps(count=DEMO_STEPS):
    """Energy ramps 0.2 → 1.15; every step is evaluated from STABLE."""
    steps = []
    for i in range(count):
        energy = 0.2 + i * 0.05
        result = evaluate(energy, DEMO_TREND, DEMO_NOISE, previous_state=SystemState.STABLE)
        steps.append({
            'stepIndex': i,
            'timestamp': i * 0.5,
            'energy': energy,
            'trend': DEMO_TREND,
            'noise': DEMO_NOISE,
            'effectiveEnergy': result.effective_energy,
            'calculatedState': result.state,
        })
    return steps


def seed_database(storage):
    """Create the demo run if no runs exist. Returns the new run id or None."""
    if storage.count_runs() > 0:
        return None

    print("[Seed] Seeding database with demo run...")
    run = storage.create_run(
        name=DEMO_RUN_NAME,
        description="Initial system calibration test",
        configuration=dict(DEFAULT_RUN_CONFIGURATION),
    )
    storage.add_steps(run['id'], demo_steps())
    print("[Seed] Seeding complete.")
    return run['id']
