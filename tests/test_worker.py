"""
Unit tests for the PR-SGD worker (run in-process, without Ray).
"""

import pytest
import torch

from prsgd.errors import DimensionMismatchError
from prsgd.losses import QuadraticLoss
from prsgd.worker import Worker


def t(values):
    return torch.tensor(values, dtype=torch.float64)


@pytest.fixture
def bowl():
    """1-D bowl x^2 without noise."""
    return QuadraticLoss([1.0], centers=[0.0], noisy=False)


class TestWorkerParameters:
    """Test broadcast and snapshot of local parameters."""

    def test_initial_parameters_are_zero(self, bowl):
        worker = Worker(0, bowl)
        assert torch.equal(worker.get_parameters(), t([0.0]))

    def test_set_parameters_copies(self):
        worker = Worker(0, QuadraticLoss([1.0, 1.0], noisy=False))
        source = t([1.0, 2.0])

        worker.set_parameters(source)
        source[0] = 99.0

        assert torch.equal(worker.get_parameters(), t([1.0, 2.0]))

    def test_set_parameters_accepts_lists(self):
        worker = Worker(0, QuadraticLoss([1.0, 1.0], noisy=False))
        worker.set_parameters([3.0, 4.0])
        assert torch.equal(worker.get_parameters(), t([3.0, 4.0]))

    def test_get_parameters_is_a_snapshot(self, bowl):
        worker = Worker(0, bowl)
        worker.set_parameters([5.0])

        snapshot = worker.get_parameters()
        worker.local_sgd(0.1, 1)

        assert torch.equal(snapshot, t([5.0]))
        assert torch.allclose(worker.get_parameters(), t([4.0]))

    def test_local_vector_is_updated_in_place(self, bowl):
        worker = Worker(0, bowl)
        local = worker._params
        worker.set_parameters([5.0])
        worker.local_sgd(0.1, 3)
        assert worker._params is local

    @pytest.mark.parametrize("values", [[1.0, 2.0], [], [[1.0]]])
    def test_set_parameters_dimension_mismatch(self, bowl, values):
        worker = Worker(0, bowl)
        with pytest.raises(DimensionMismatchError):
            worker.set_parameters(values)


class TestLocalSGD:
    """Test local optimization."""

    def test_single_step(self, bowl):
        worker = Worker(0, bowl)
        worker.set_parameters([5.0])

        worker.local_sgd(0.1, 1)

        # gradient 2 * 1 * 5 = 10, update 5 - 0.1 * 10
        assert worker.get_parameters().item() == pytest.approx(4.0)

    def test_multiple_steps(self, bowl):
        worker = Worker(0, bowl)
        worker.set_parameters([5.0])

        worker.local_sgd(0.1, 3)

        # each step multiplies x by (1 - 2 * 0.1)
        assert worker.get_parameters().item() == pytest.approx(5.0 * 0.8 ** 3)

    def test_zero_steps_is_noop(self):
        worker = Worker(0, QuadraticLoss([1.0, 2.0], noisy=True, seed=0))
        worker.set_parameters([5.0, -1.0])

        worker.local_sgd(0.1, 0)

        assert torch.equal(worker.get_parameters(), t([5.0, -1.0]))
        assert worker.get_stats()["total_steps"] == 0

    def test_negative_steps_rejected(self, bowl):
        worker = Worker(0, bowl)
        with pytest.raises(ValueError):
            worker.local_sgd(0.1, -1)

    def test_noisy_steps_use_noise(self):
        noisy = Worker(0, QuadraticLoss([1.0, 1.0], noisy=True, seed=1))
        clean = Worker(1, QuadraticLoss([1.0, 1.0], noisy=False))
        for w in (noisy, clean):
            w.set_parameters([3.0, 3.0])
            w.local_sgd(0.1, 5)

        assert not torch.allclose(noisy.get_parameters(), clean.get_parameters())

    def test_converges_without_noise(self):
        worker = Worker(0, QuadraticLoss([1.0, 0.5], centers=[2.0, -1.0], noisy=False))
        worker.set_parameters([10.0, 10.0])

        worker.local_sgd(0.1, 500)

        assert torch.allclose(worker.get_parameters(), t([2.0, -1.0]), atol=1e-6)

    def test_stats(self, bowl):
        worker = Worker(3, bowl, start_delay=0.05)
        worker.set_parameters([1.0])

        worker.local_sgd(0.1, 2)
        worker.local_sgd(0.1, 3)
        stats = worker.get_stats()

        assert stats["worker_id"] == 3
        assert stats["total_steps"] == 5
        assert stats["last_latency_ms"] >= 50
        assert stats["last_finished_at"] is not None
