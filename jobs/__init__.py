"""Background jobs: nightly research aggregation, its queue and scheduler."""

from jobs.nightly import NightlyResearchJob, NightlyRunResult, rank_topics
from jobs.queue import JobQueue, JobRecord, JobState
from jobs.scheduler import NightlyScheduler

__all__ = [
    "JobQueue",
    "JobRecord",
    "JobState",
    "NightlyResearchJob",
    "NightlyRunResult",
    "NightlyScheduler",
    "rank_topics",
]
