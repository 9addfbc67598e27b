import random
import unittest

from pydantic import ValidationError

from simlab.models.jobs import ImportedSimulation, SimulationParameters
from simlab.services.simulation import SimulationSink, run_simulation

from tests.helpers import make_params


def _without_timestamp(result):
    return {k: v for k, v in result.items() if k != "timestamp"}


class RunSimulationTest(unittest.TestCase):
    def test_seeded_runs_are_reproducible(self):
        params = make_params(seed=11, drugCarrierCount=20, stemCount=10)
        first = run_simulation(params)
        second = run_simulation(params)
        self.assertEqual(_without_timestamp(first), _without_timestamp(second))
        self.assertTrue(first["timestamp"].endswith("Z"))

    def test_result_shape(self):
        result = run_simulation(make_params(mode="2D", substrate="Glucose", duration=2))
        self.assertEqual(result["initialTumorCount"], 100)
        self.assertEqual(result["immuneCellsDeployed"], 50)
        self.assertEqual(result["simulationDuration"], 2)
        self.assertEqual(result["mode"], "2D")
        self.assertEqual(result["substrate"], "Glucose")
        self.assertGreaterEqual(result["finalTumorCount"], 0)
        self.assertGreaterEqual(result["survivalRate"], 0)
        self.assertLessEqual(result["survivalRate"], 100)

    def test_3d_scales_final_count(self):
        flat = run_simulation(make_params(seed=3), rng=random.Random(3))
        deep = run_simulation(make_params(seed=3, mode="3D", z=10), rng=random.Random(3))
        self.assertEqual(deep["finalTumorCount"], int(flat["finalTumorCount"] * 1.5))

    def test_absent_populations_contribute_nothing(self):
        result = run_simulation(make_params(immuneCount=0, fibroblastCount=0, drugCarrierCount=0))
        self.assertEqual(result["tumorCellsKilledByImmune"], 0)
        self.assertEqual(result["immuneEfficiency"], 0)
        self.assertEqual(result["fibroblastActivity"], 0)
        self.assertEqual(result["drugEffectiveness"], 0)


class SimulationSinkTest(unittest.IsolatedAsyncioTestCase):
    async def test_sink_returns_result(self):
        sink = SimulationSink(seconds_per_duration_unit=0)
        result = await sink(make_params())
        self.assertEqual(result["initialTumorCount"], 100)


class SimulationParametersTest(unittest.TestCase):
    def test_tumor_count_bounds(self):
        for bad in (0, 10001):
            with self.subTest(tumorCount=bad):
                with self.assertRaises(ValidationError):
                    make_params(tumorCount=bad)

    def test_duration_must_be_positive(self):
        with self.assertRaises(ValidationError):
            make_params(duration=0)

    def test_depth_rules(self):
        with self.assertRaises(ValidationError):
            make_params(mode="2D", z=5)
        with self.assertRaises(ValidationError):
            make_params(mode="3D")
        self.assertEqual(make_params(mode="2D", z=0).z, 0)
        self.assertEqual(make_params(mode="3D", z=4).z, 4)

    def test_movement_spellings(self):
        params = make_params(tumorMovement="static", immuneMovement="none", stemMovement="directed")
        self.assertEqual(params.tumor_movement, "None")
        self.assertEqual(params.immune_movement, "None")
        self.assertEqual(params.stem_movement, "Directed")
        with self.assertRaises(ValidationError):
            make_params(tumorMovement="teleport")

    def test_snake_case_names_accepted(self):
        params = SimulationParameters(tumor_count=5)
        self.assertEqual(params.tumor_count, 5)
        self.assertEqual(params.model_dump(by_alias=True)["tumorCount"], 5)

    def test_frozen(self):
        params = make_params()
        with self.assertRaises(ValidationError):
            params.duration = 9


class ImportedSimulationTest(unittest.TestCase):
    def test_import_defaults(self):
        data = {"title": "Imported", "mode": "2D", "substrate": "Oxygen", "duration": 3, "tumorCount": 200}
        imported = ImportedSimulation.model_validate(data)
        self.assertEqual(imported.immune_count, 50)
        self.assertEqual(imported.stem_count, 25)
        self.assertEqual(imported.fibroblast_count, 75)
        self.assertEqual(imported.drug_carrier_count, 30)
        self.assertEqual(imported.division_rate, 0.05)
        self.assertEqual((imported.x, imported.y), (100, 100))
        self.assertEqual(imported.tumor_movement, "Random")
        self.assertEqual(imported.stem_movement, "None")

    def test_import_requires_core_fields(self):
        with self.assertRaises(ValidationError):
            ImportedSimulation.model_validate({"tumorCount": 200})


if __name__ == "__main__":
    unittest.main()
