from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple

from simlab.models.jobs import SimulationParameters
from simlab.services.job_store import InMemoryJobStore, Job


def make_params(**overrides: Any) -> SimulationParameters:
    data = {"title": "baseline", "tumorCount": 100, "immuneCount": 50, "duration": 1, "seed": 7}
    data.update(overrides)
    return SimulationParameters.model_validate(data)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingJobStore(InMemoryJobStore):
    """Records every successful transition and every job it hands back."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.transitions: List[Tuple[str, str, str]] = []
        self.observed: List[Job] = []

    async def transition(self, job_id, from_status, to_status, result=None, *, attempts=None, error=None):
        job = await super().transition(job_id, from_status, to_status, result, attempts=attempts, error=error)
        self.transitions.append((job_id, from_status, to_status))
        self.observed.append(job)
        return job
