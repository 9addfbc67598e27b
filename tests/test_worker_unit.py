import asyncio
import unittest
import uuid

from simlab.models.jobs import DispatchMessage
from simlab.services.dispatcher import Dispatcher
from simlab.services.errors import StoreUnavailable
from simlab.services.queue import Delivery, InMemoryQueue, encode
from simlab.services.simulation import SimulationSink
from simlab.services.worker import Worker

from tests.helpers import RecordingJobStore, make_params


def _delivery(job_id, parameters=None, tag="d1", count=1):
    message = DispatchMessage(job_id=job_id, parameters=parameters or make_params())
    return Delivery(body=encode(message), delivery_tag=tag, delivery_count=count)


class CountingCompute:
    def __init__(self, fail=False, result=None):
        self.calls = 0
        self.fail = fail
        self.result = result or {"finalTumorCount": 42}

    async def __call__(self, parameters):
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("solver diverged")
        return dict(self.result)


class DoneUnavailableStore(RecordingJobStore):
    async def transition(self, job_id, from_status, to_status, result=None, *, attempts=None, error=None):
        if to_status == "Done":
            raise StoreUnavailable("jobs.transition: primary stepped down")
        return await super().transition(job_id, from_status, to_status, result, attempts=attempts, error=error)


class WorkerTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = RecordingJobStore()
        self.queue = InMemoryQueue()
        self.dispatcher = Dispatcher(self.store, self.queue, max_batch_size=10)

    def _worker(self, compute, **kwargs):
        return Worker(self.store, self.queue, compute, **kwargs)

    async def test_batch_runs_to_done_and_delete_is_independent(self):
        worker = self._worker(SimulationSink(seconds_per_duration_unit=0))
        jobs = await self.dispatcher.submit_batch("alice", make_params(), 3)

        await self.queue.drain(worker.handle)

        listed = await self.store.list("alice")
        self.assertEqual([j.status for j in listed], ["Done"] * 3)
        for job in listed:
            self.assertEqual(job.result["initialTumorCount"], 100)
            self.assertEqual(job.attempts, 0)
        self.assertEqual(self.queue.acked, 3)

        await self.store.delete(jobs[1].id, "alice")
        remaining = await self.store.list("alice")
        self.assertEqual(len(remaining), 2)
        self.assertTrue(all(j.status == "Done" for j in remaining))

    async def test_duplicate_deliveries_compute_once(self):
        compute = CountingCompute()
        worker = self._worker(compute)
        job = await self.store.create("alice", make_params())

        outcomes = await asyncio.gather(
            worker.handle(_delivery(job.id, tag="a")),
            worker.handle(_delivery(job.id, tag="b", count=2)),
        )

        self.assertEqual(compute.calls, 1)
        self.assertTrue(all(o.ack for o in outcomes))
        self.assertEqual((await self.store.get(job.id, "alice")).status, "Done")
        claims = [t for t in self.store.transitions if t[2] == "Running"]
        self.assertEqual(len(claims), 1)

    async def test_retries_then_fails_and_stays_failed(self):
        compute = CountingCompute(fail=True)
        worker = self._worker(compute, retry_limit=2)
        job = await self.dispatcher.submit("alice", make_params())

        await self.queue.drain(worker.handle)

        self.assertEqual(
            [(f, t) for _, f, t in self.store.transitions],
            [
                ("Submitted", "Running"),
                ("Running", "Submitted"),
                ("Submitted", "Running"),
                ("Running", "Submitted"),
                ("Submitted", "Running"),
                ("Running", "Failed"),
            ],
        )
        self.assertEqual(compute.calls, 3)
        self.assertEqual(self.queue.dropped, 1)
        self.assertEqual(self.queue.pending, 0)

        failed = await self.store.get(job.id, "alice")
        self.assertEqual(failed.status, "Failed")
        self.assertEqual(failed.attempts, 3)
        self.assertIn("solver diverged", failed.last_error)
        self.assertIsNone(failed.result)

        # A late duplicate is acknowledged without recomputing.
        outcome = await worker.handle(_delivery(job.id, count=5))
        self.assertTrue(outcome.ack)
        self.assertEqual(compute.calls, 3)

    async def test_zero_retry_limit_fails_on_first_error(self):
        compute = CountingCompute(fail=True)
        worker = self._worker(compute, retry_limit=0)
        job = await self.dispatcher.submit("alice", make_params())

        await self.queue.drain(worker.handle)

        self.assertEqual(compute.calls, 1)
        self.assertEqual((await self.store.get(job.id, "alice")).status, "Failed")

    async def test_deleted_job_is_acked_without_compute(self):
        compute = CountingCompute()
        worker = self._worker(compute)
        job = await self.dispatcher.submit("alice", make_params())
        await self.store.delete(job.id, "alice")

        await self.queue.drain(worker.handle)

        self.assertEqual(compute.calls, 0)
        self.assertEqual(self.queue.acked, 1)
        self.assertEqual(self.store.transitions, [])

    async def test_timeout_counts_as_failed_attempt(self):
        async def slow(parameters):
            await asyncio.sleep(5)
            return {"never": True}

        worker = self._worker(slow, compute_timeout_s=0.01)
        job = await self.store.create("alice", make_params())

        outcome = await worker.handle(_delivery(job.id))

        self.assertFalse(outcome.ack)
        self.assertTrue(outcome.requeue)
        back = await self.store.get(job.id, "alice")
        self.assertEqual(back.status, "Submitted")
        self.assertEqual(back.attempts, 1)
        self.assertIn("exceeded", back.last_error)

    async def test_longest_simulation_fits_default_timeout(self):
        # Default ratio (0.1 s per unit against 300 s) scaled down a hundredfold.
        worker = self._worker(SimulationSink(seconds_per_duration_unit=0.001), compute_timeout_s=3, retry_limit=1)
        job = await self.dispatcher.submit("alice", make_params(duration=1000))

        await self.queue.drain(worker.handle)

        done = await self.store.get(job.id, "alice")
        self.assertEqual(done.status, "Done")
        self.assertEqual(done.attempts, 0)
        self.assertEqual(done.result["simulationDuration"], 1000)

    async def test_empty_result_is_a_failure(self):
        async def empty(parameters):
            return {}

        worker = self._worker(empty)
        job = await self.store.create("alice", make_params())
        await worker.handle(_delivery(job.id))
        self.assertEqual((await self.store.get(job.id, "alice")).attempts, 1)

    async def test_store_outage_on_result_is_not_a_job_failure(self):
        self.store = DoneUnavailableStore()
        compute = CountingCompute()
        worker = self._worker(compute)
        job = await self.store.create("alice", make_params())

        outcome = await worker.handle(_delivery(job.id))

        self.assertFalse(outcome.ack)
        self.assertTrue(outcome.requeue)
        running = await self.store.get(job.id, "alice")
        self.assertEqual(running.status, "Running")
        self.assertEqual(running.attempts, 0)

        # Redelivery finds it Running and lets the stale sweep handle it.
        outcome = await worker.handle(_delivery(job.id, count=2))
        self.assertTrue(outcome.ack)
        self.assertEqual(compute.calls, 1)

    async def test_malformed_message_is_dropped(self):
        worker = self._worker(CountingCompute())
        self.queue.publish_raw('{"jobId": "not-a-uuid"}')
        self.queue.publish_raw("not json")

        await self.queue.drain(worker.handle)

        self.assertEqual(self.queue.dropped, 2)
        self.assertEqual(self.queue.pending, 0)

    async def test_unknown_job_is_acked(self):
        worker = self._worker(CountingCompute())
        outcome = await worker.handle(_delivery(str(uuid.uuid4())))
        self.assertTrue(outcome.ack)

    async def test_sync_compute_runs_off_loop(self):
        def compute(parameters):
            return {"tumors": parameters.tumor_count}

        worker = self._worker(compute)
        job = await self.store.create("alice", make_params(tumorCount=12))
        await worker.handle(_delivery(job.id, make_params(tumorCount=12)))

        done = await self.store.get(job.id, "alice")
        self.assertEqual(done.status, "Done")
        self.assertEqual(done.result, {"tumors": 12})

    async def test_cancellation_releases_job_without_attempt(self):
        started = asyncio.Event()

        async def blocked(parameters):
            started.set()
            await asyncio.Event().wait()

        worker = self._worker(blocked)
        job = await self.store.create("alice", make_params())

        task = asyncio.create_task(worker.handle(_delivery(job.id)))
        await started.wait()
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        released = await self.store.get(job.id, "alice")
        self.assertEqual(released.status, "Submitted")
        self.assertEqual(released.attempts, 0)

    async def test_result_present_exactly_when_done(self):
        flaky = CountingCompute(fail=True)
        worker = self._worker(flaky, retry_limit=1)
        await self.dispatcher.submit("alice", make_params())
        await self.queue.drain(worker.handle)

        worker = self._worker(CountingCompute())
        await self.dispatcher.submit_batch("alice", make_params(), 2)
        await self.queue.drain(worker.handle)

        self.assertTrue(self.store.observed)
        for job in self.store.observed:
            self.assertEqual(job.status == "Done", job.result is not None)

    async def test_run_stops_on_event(self):
        worker = self._worker(CountingCompute())
        await self.dispatcher.submit("alice", make_params())
        stop = asyncio.Event()
        task = asyncio.create_task(worker.run(stop))
        for _ in range(100):
            if self.queue.acked:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)
        self.assertEqual(self.queue.acked, 1)

    def test_negative_retry_limit_rejected(self):
        with self.assertRaises(ValueError):
            Worker(self.store, self.queue, CountingCompute(), retry_limit=-1)


if __name__ == "__main__":
    unittest.main()
