import os
import pytest
from fastapi.testclient import TestClient

# Minnesbackend och korta skanningsfördröjningar innan appen importeras
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SCAN_DELAY_MIN_SECONDS", "0.05")
os.environ.setdefault("SCAN_DELAY_MAX_SECONDS", "0.1")

from scanform.entities import build_collections
from scanform.main import app, _upload_request_times
from scanform.store import MemoryKeyedStore


class FixedRandom:
    """Deterministisk slumpkälla: random() returnerar värdena i tur och ordning."""

    def __init__(self, *values: float, score: int = 42):
        self.values = list(values) or [0.5]
        self.score = score

    def random(self) -> float:
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]

    def randrange(self, stop: int) -> int:
        return min(self.score, stop - 1)

    def uniform(self, a: float, b: float) -> float:
        return a


class FakeJob:
    def __init__(self, job_id: str):
        self.id = job_id


class FakeScheduler:
    """Samlar jobb i stället för att köra dem, så att testerna styr tidpunkten."""

    def __init__(self):
        self.jobs = []

    def add_job(self, func, trigger, **kwargs):
        self.jobs.append({"func": func, "trigger": trigger, **kwargs})
        return FakeJob(f"job-{len(self.jobs)}")


@pytest.fixture
def client():
    _upload_request_times.clear()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def collections():
    return build_collections(MemoryKeyedStore)


@pytest.fixture
def fixed_random():
    return FixedRandom


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()
