import os

import pytest
import ray

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Ray worker processes inherit the environment of the driver
os.environ["PYTHONPATH"] = os.pathsep.join(p for p in (ROOT, os.environ.get("PYTHONPATH")) if p)


@pytest.fixture(scope="session")
def ray_session():
    """Local Ray instance shared by every test that spawns worker actors."""
    ray.init(num_cpus=4, include_dashboard=False, ignore_reinit_error=True, log_to_driver=False)
    yield
    ray.shutdown()


@pytest.fixture
def make_coordinator(ray_session):
    """Build coordinators and kill their worker actors after the test."""
    from prsgd.coordinator import Coordinator

    created = []

    def factory(*args, shared_workers=None, **kwargs):
        if shared_workers is not None:
            coordinator = Coordinator.shared(shared_workers, *args, **kwargs)
        else:
            coordinator = Coordinator(*args, **kwargs)
        created.append(coordinator)
        return coordinator

    yield factory

    for coordinator in created:
        coordinator.shutdown()
