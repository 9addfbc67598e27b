"""
Tumour/immune/drug-carrier simulation used as the worker's result sink.

A closed-form randomized model: tumour growth per time step, immune kill,
drug carrier attenuation, then summary metrics. Seeding `parameters.seed`
makes the output reproducible.
"""

from __future__ import annotations

import asyncio
import math
import random
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from simlab.models.jobs import SimulationParameters

STEPS_PER_UNIT = 10
VOLUME_FACTOR_3D = 1.5


def run_simulation(parameters: SimulationParameters, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    rng = rng or random.Random(parameters.seed)

    def jitter() -> float:
        # +/-10%
        return 0.9 + rng.random() * 0.2

    tumor_count = parameters.tumor_count
    immune_count = parameters.immune_count
    drug_carrier_count = parameters.drug_carrier_count

    growth = parameters.division_rate - parameters.decay_rate
    steps = max(1, int(parameters.duration * STEPS_PER_UNIT))

    current = float(tumor_count)
    killed_by_immune = 0
    drug_effect_total = 0.0

    for _ in range(steps):
        current *= (1 + growth / steps) * jitter()

        if immune_count > 0:
            immune_effect = (immune_count / 1000) * 0.01 * jitter()
            killed = math.floor(current * immune_effect)
            killed_by_immune += killed
            current -= killed

        if drug_carrier_count > 0:
            drug_effect = (drug_carrier_count / 100) * 0.005 * jitter()
            current *= 1 - drug_effect
            drug_effect_total += drug_effect

    final_count = max(0, math.floor(current))
    survival = max(0.0, min(1.0, 1 - final_count / (tumor_count * 10)))
    immune_efficiency = killed_by_immune / (tumor_count + killed_by_immune) if immune_count > 0 else 0.0
    volume_factor = VOLUME_FACTOR_3D if parameters.mode == "3D" else 1.0

    return {
        "initialTumorCount": tumor_count,
        "finalTumorCount": math.floor(final_count * volume_factor),
        "tumorGrowthRate": round((final_count - tumor_count) / tumor_count * 100, 4),
        "immuneCellsDeployed": immune_count,
        "tumorCellsKilledByImmune": killed_by_immune,
        "immuneEfficiency": round(immune_efficiency * 100, 2),
        "stemCellsActivated": math.floor(parameters.stem_count * 0.3 * jitter()),
        "fibroblastActivity": round(rng.random() * 50 + 25, 2) if parameters.fibroblast_count > 0 else 0,
        "drugCarriersUsed": drug_carrier_count,
        "drugEffectiveness": round(drug_effect_total * 100 / steps, 2),
        "survivalRate": round(survival * 100, 2),
        "simulationDuration": parameters.duration,
        "mode": parameters.mode,
        "substrate": parameters.substrate,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


class SimulationSink:
    """Async result sink: simulated processing time, then `run_simulation` off-loop."""

    def __init__(self, seconds_per_duration_unit: float = 0.1) -> None:
        self.seconds_per_duration_unit = seconds_per_duration_unit

    async def __call__(self, parameters: SimulationParameters) -> Dict[str, Any]:
        delay = parameters.duration * self.seconds_per_duration_unit
        if delay > 0:
            await asyncio.sleep(delay)
        return await asyncio.to_thread(run_simulation, parameters)
