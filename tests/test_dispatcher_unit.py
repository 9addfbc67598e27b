import json
import unittest

from pydantic import ValidationError

from simlab.services.dispatcher import Dispatcher
from simlab.services.errors import InvalidArgument, QueueUnavailable
from simlab.services.job_store import InMemoryJobStore
from simlab.services.queue import InMemoryQueue, Outcome

from tests.helpers import make_params


class FlakyQueue(InMemoryQueue):
    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.calls = 0

    async def publish(self, message):
        self.calls += 1
        if self.calls == self.fail_on:
            raise QueueUnavailable("broker down")
        await super().publish(message)


class DispatcherTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryJobStore()
        self.queue = InMemoryQueue()
        self.dispatcher = Dispatcher(self.store, self.queue, max_batch_size=10)

    async def test_count_out_of_range_creates_nothing(self):
        for count in (0, -1, 11, True, 2.5):
            with self.subTest(count=count):
                with self.assertRaises(InvalidArgument):
                    await self.dispatcher.submit_batch("alice", make_params(), count)
        self.assertEqual(await self.store.list("alice"), [])
        self.assertEqual(self.queue.pending, 0)

    async def test_batch_of_five_yields_five_independent_jobs(self):
        jobs = await self.dispatcher.submit_batch("alice", make_params(), 5)
        ids = [job.id for job in jobs]
        self.assertEqual(len(set(ids)), 5)
        self.assertEqual(self.queue.pending, 5)
        self.assertTrue(all(job.status == "Submitted" for job in jobs))

        bodies = []

        async def collect(delivery):
            bodies.append(json.loads(delivery.body))
            return Outcome.acked()

        await self.queue.drain(collect)
        self.assertEqual([b["jobId"] for b in bodies], ids)
        self.assertEqual(bodies[0]["parameters"]["tumorCount"], 100)

        for job in await self.store.list("alice"):
            self.assertIsNotNone(job.dispatched_at)

        # Each job moves on its own.
        await self.store.delete(ids[0], "alice")
        await self.store.transition(ids[1], "Submitted", "Running")
        remaining = {job.id: job.status for job in await self.store.list("alice")}
        self.assertEqual(len(remaining), 4)
        self.assertEqual(remaining[ids[1]], "Running")
        self.assertEqual(remaining[ids[2]], "Submitted")

    async def test_parameters_are_a_frozen_snapshot(self):
        template = make_params()
        jobs = await self.dispatcher.submit_batch("alice", template, 2)
        with self.assertRaises(ValidationError):
            template.tumor_count = 5
        self.assertEqual(jobs[0].parameters, template)
        self.assertEqual(jobs[1].parameters, template)

    async def test_publish_failure_fails_fast_and_leaves_job_submitted(self):
        queue = FlakyQueue(fail_on=2)
        dispatcher = Dispatcher(self.store, queue, max_batch_size=10)
        with self.assertRaises(QueueUnavailable):
            await dispatcher.submit_batch("alice", make_params(), 4)

        jobs = await self.store.list("alice")
        self.assertEqual(len(jobs), 2)
        self.assertEqual(queue.pending, 1)
        orphan = [job for job in jobs if job.dispatched_at is None]
        self.assertEqual(len(orphan), 1)
        self.assertEqual(orphan[0].status, "Submitted")

    async def test_submit_single(self):
        job = await self.dispatcher.submit("alice", make_params(title="one"))
        self.assertEqual(job.parameters.title, "one")
        self.assertEqual(self.queue.pending, 1)


if __name__ == "__main__":
    unittest.main()
