import asyncio

import pytest

from jobs.queue import CANCELLED_ERROR, JobQueue, JobState
from jobs.scheduler import NIGHTLY_JOB_NAME, NightlyScheduler

pytestmark = pytest.mark.unit


def make_handler(seen: list):
    async def handler(payload):
        seen.append(payload)
        if payload.get("fail"):
            raise ValueError("digest write failed")
        return {"status": "completed", "n": payload.get("n")}

    return handler


class TestJobQueue:
    """Single-worker queue: ordering, retention and failure capture."""

    def test_jobs_run_in_enqueue_order(self, clock):
        seen: list = []
        queue = JobQueue("nightly", make_handler(seen), clock=clock)

        async def scenario():
            await queue.start()
            jobs = [await queue.enqueue({"n": n}) for n in range(3)]
            await queue.join()
            await queue.stop()
            return jobs

        jobs = asyncio.run(scenario())

        assert [p["n"] for p in seen] == [0, 1, 2]
        assert all(j.state is JobState.COMPLETED for j in jobs)
        assert jobs[0].result == {"status": "completed", "n": 0}
        assert jobs[0].attempts == 1
        assert queue.counts() == {"waiting": 0, "active": 0, "completed": 3, "failed": 0}
        assert queue.running is False

    def test_retention_keeps_only_recent_jobs(self):
        queue = JobQueue("nightly", make_handler([]), keep_completed=2, keep_failed=1)

        async def scenario():
            await queue.start()
            for n in range(4):
                await queue.enqueue({"n": n})
            for _ in range(3):
                await queue.enqueue({"fail": True})
            await queue.join()
            await queue.stop()

        asyncio.run(scenario())

        assert queue.counts()["completed"] == 2
        assert queue.counts()["failed"] == 1
        kept = sorted(j.payload.get("n") for j in queue.recent() if j.state is JobState.COMPLETED)
        assert kept == [2, 3]

    def test_failures_are_captured_and_the_worker_keeps_going(self, clock):
        seen: list = []
        queue = JobQueue("nightly", make_handler(seen), clock=clock)

        async def scenario():
            await queue.start()
            failed = await queue.enqueue({"fail": True})
            ok = await queue.enqueue({"n": 1})
            await ok.wait()
            await queue.stop()
            return failed, ok

        failed, ok = asyncio.run(scenario())

        assert failed.state is JobState.FAILED
        assert failed.error == "ValueError: digest write failed"
        assert failed.result is None
        assert failed.finished_at == clock.now
        assert ok.state is JobState.COMPLETED
        assert queue.get(failed.id) is failed

    def test_enqueue_requires_a_started_queue(self):
        queue = JobQueue("nightly", make_handler([]))

        with pytest.raises(RuntimeError):
            asyncio.run(queue.enqueue({}))

    def test_stop_settles_active_and_waiting_jobs(self, cache, clock):
        started = []

        async def slow_handler(payload):
            started.append(payload["n"])
            await asyncio.sleep(60)
            return {}

        queue = JobQueue("nightly", slow_handler, cache=cache, clock=clock)

        async def scenario():
            await queue.start()
            jobs = [await queue.enqueue({"n": n}) for n in range(3)]
            while not started:
                await asyncio.sleep(0)
            await queue.stop()
            settled = [await asyncio.wait_for(j.wait(), 1) for j in jobs]
            mirrored = await cache.get(f"jobs:nightly:{jobs[2].id}")
            return settled, mirrored

        jobs, mirrored = asyncio.run(scenario())

        assert started == [0]
        assert [j.state for j in jobs] == [JobState.FAILED] * 3
        assert {j.error for j in jobs} == {CANCELLED_ERROR}
        assert all(j.finished_at == clock.now for j in jobs)
        assert queue.counts() == {"waiting": 0, "active": 0, "completed": 0, "failed": 3}
        assert mirrored["state"] == "failed"

    def test_job_state_is_mirrored_to_cache(self, cache, clock):
        queue = JobQueue("nightly", make_handler([]), cache=cache, clock=clock)

        async def scenario():
            await queue.start()
            job = await queue.enqueue({"n": 7}, name="collect-research")
            await queue.join()
            await queue.stop()
            return job, await cache.get(f"jobs:nightly:{job.id}")

        job, mirrored = asyncio.run(scenario())

        assert mirrored["state"] == "completed"
        assert mirrored["name"] == "collect-research"
        assert mirrored["result"] == {"status": "completed", "n": 7}
        assert mirrored == job.to_dict()


class TestNightlyScheduler:
    def test_status_before_scheduling(self):
        scheduler = NightlyScheduler(JobQueue("nightly", make_handler([])), cron="30 3 * * *")

        assert scheduler.status() == {"scheduled": False, "cron": "30 3 * * *", "next_run": None}

    def test_schedule_registers_the_cron_job(self):
        scheduler = NightlyScheduler(JobQueue("nightly", make_handler([])), cron="30 3 * * *")

        async def scenario():
            first = scheduler.schedule()
            second = scheduler.schedule()
            jobs = scheduler.scheduler.get_jobs()
            scheduler.shutdown()
            return first, second, jobs

        first, second, jobs = asyncio.run(scenario())

        assert first["scheduled"] is True
        assert "T03:30:00" in first["next_run"]
        assert second["next_run"] == first["next_run"]
        # rescheduling replaces rather than duplicates
        assert len(jobs) == 1

    def test_trigger_enqueues_a_nightly_job(self):
        seen: list = []
        queue = JobQueue("nightly", make_handler(seen))
        scheduler = NightlyScheduler(queue)

        async def scenario():
            await queue.start()
            enqueued = await scheduler.trigger()
            await queue.join()
            await queue.stop()
            return enqueued

        enqueued = asyncio.run(scenario())

        assert enqueued["name"] == NIGHTLY_JOB_NAME
        assert enqueued["state"] == "waiting"
        assert "date" in seen[0]
