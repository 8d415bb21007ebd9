"""
Parallel Restarted SGD coordinator.

Each round the coordinator broadcasts the global parameters to every worker,
lets all workers run local SGD concurrently (one Ray actor per worker), waits
for every worker to finish, and replaces the global parameters with the
average of the workers' parameters. After each round the monitoring loss and
the norm of its noise-free gradient are recorded.
"""

from __future__ import annotations
import math
import operator
import time
from typing import Optional, Sequence

import ray
import torch

from prsgd.config import TrainConfig
from prsgd.errors import DimensionMismatchError, DivergenceError, InvalidConstructionError
from prsgd.logger import logger
from prsgd.losses import AverageLoss, LossFunction
from prsgd.metrics import MetricsCollector
from prsgd.utils import as_vector, l2_norm
from prsgd.worker import RemoteWorker


def average_parameters(snapshots: Sequence[torch.Tensor]) -> torch.Tensor:
    """Coordinatewise mean of the workers' parameter vectors."""
    n = len(snapshots)
    if n == 0:
        raise ValueError("Cannot average an empty list of parameters")
    avg = torch.zeros_like(snapshots[0], dtype=torch.float64)
    for params in snapshots:
        avg += params / n
    return avg


def _as_count(value, name: str) -> int:
    """Integral counts only; floats such as 1.9 are rejected rather than truncated"""
    try:
        return operator.index(value)
    except TypeError:
        raise InvalidConstructionError(f"{name} must be integers, got {value!r}") from None


class Coordinator:
    """
    Runs PR-SGD over one worker per loss function.

    The function minimized is the average of the workers' loss functions;
    it is used as the monitoring loss unless `monitor` is given.

    Args:
        loss_functions: One loss function per worker (same input dimension)
        monitor: Loss function evaluated after each round (default: average)
        init_range: Global parameters are drawn uniformly in (low, high)
        initial_parameters: Explicit initial global parameters
        seed: Seed for the initial global parameters
        cfg: Straggler simulation and divergence policy
        worker_delays: Fixed delay in seconds before each worker's local phase
        metrics: Optional metrics collector
    """

    def __init__(
        self,
        loss_functions: Sequence[LossFunction],
        monitor: Optional[LossFunction] = None,
        init_range: tuple[float, float] = (-10.0, 10.0),
        initial_parameters=None,
        seed: Optional[int] = None,
        cfg: Optional[TrainConfig] = None,
        worker_delays: Optional[Sequence[float]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        loss_functions = list(loss_functions)
        if not loss_functions:
            raise InvalidConstructionError("Need at least one worker")

        # Validates that all workers share one input dimension
        average = AverageLoss(loss_functions)
        self.monitor = monitor if monitor is not None else average
        if self.monitor.input_dim != average.input_dim:
            raise InvalidConstructionError("Monitoring loss must have the workers' input dimension")

        self.cfg = cfg or TrainConfig(d=average.input_dim, num_workers=len(loss_functions))
        self.metrics = metrics

        if worker_delays is None:
            worker_delays = [0.0] * len(loss_functions)
        if len(worker_delays) != len(loss_functions):
            raise InvalidConstructionError("Need one worker delay per worker")

        dim = average.input_dim
        if initial_parameters is not None:
            params = as_vector(initial_parameters).clone()
            if params.shape != (dim,):
                raise DimensionMismatchError(
                    f"Initial parameters must have shape ({dim},), got {tuple(params.shape)}"
                )
            self._parameters = params
        else:
            self._parameters = self._init_parameters(dim, *init_range, seed=seed)

        # Each worker draws gradient noise from its own stream, even when
        # all workers share one loss function
        self._workers = [
            RemoteWorker.remote(
                i,
                loss_fn.spawn(),
                start_delay=worker_delays[i],
                hetero_base=self.cfg.hetero_base,
                hetero_jitter=self.cfg.hetero_jitter,
                hetero_straggler_every=self.cfg.hetero_straggler_every,
            )
            for i, loss_fn in enumerate(loss_functions)
        ]

        self._loss_history: list[float] = []
        self._gradient_norm_history: list[float] = []
        # Time at which the last round passed its barrier
        self.last_aggregation_started_at: Optional[float] = None

        logger.info(f"Coordinator ready: {self.num_workers} workers, d={dim}, monitor={self.monitor!r}")

    @classmethod
    def shared(cls, num_workers: int, loss_fn: LossFunction, **kwargs) -> "Coordinator":
        """All workers optimize the same loss function, which is also the monitoring loss."""
        if num_workers < 1:
            raise InvalidConstructionError("Need at least one worker")
        return cls([loss_fn] * num_workers, monitor=loss_fn, **kwargs)

    @staticmethod
    def _init_parameters(dim: int, low: float, high: float, seed: Optional[int] = None) -> torch.Tensor:
        """Each coordinate sampled uniformly in the interval (low, high)"""
        if not low < high:
            raise InvalidConstructionError(f"Invalid initialization range ({low}, {high})")
        gen = torch.Generator()
        if seed is not None:
            gen.manual_seed(seed)
        else:
            gen.seed()
        return torch.empty(dim, dtype=torch.float64).uniform_(low, high, generator=gen)

    @property
    def num_workers(self) -> int:
        return len(self._workers)

    @property
    def input_dim(self) -> int:
        return self._parameters.shape[0]

    @property
    def parameters(self) -> torch.Tensor:
        return self._parameters.clone()

    @property
    def loss_history(self) -> list[float]:
        return list(self._loss_history)

    @property
    def gradient_norm_history(self) -> list[float]:
        return list(self._gradient_norm_history)

    def run_prsgd(self, num_iterations: int, num_local_steps: Sequence[int], learning_rate: float):
        """Run num_iterations rounds; worker i performs num_local_steps[i] local steps per round."""
        if not self._workers:
            raise RuntimeError("Coordinator has been shut down")
        num_iterations = _as_count(num_iterations, "num_iterations")
        num_local_steps = [_as_count(k, "num_local_steps") for k in num_local_steps]
        if num_iterations < 0:
            raise InvalidConstructionError(f"num_iterations must be non negative, got {num_iterations}")
        if len(num_local_steps) != self.num_workers:
            raise InvalidConstructionError(
                f"Expected {self.num_workers} local step counts, got {len(num_local_steps)}"
            )
        if any(k < 0 for k in num_local_steps):
            raise InvalidConstructionError("Local step counts must be non negative")

        if self.metrics:
            self.metrics.start_training()
        try:
            for r in range(1, num_iterations + 1):
                self._run_round(r, num_local_steps, learning_rate)
        finally:
            if self.metrics:
                self.metrics.stop_training()

        if self.metrics and self._loss_history:
            self.metrics.record_final(
                len(self._loss_history), self._loss_history[-1], self._gradient_norm_history[-1]
            )

    def _run_round(self, r: int, num_local_steps: list[int], learning_rate: float):
        # Broadcast + local SGD on every worker concurrently. Calls on one
        # actor run in submission order, so set_parameters precedes local_sgd.
        global_ref = ray.put(self._parameters)
        tasks = []
        for worker, num_steps in zip(self._workers, num_local_steps):
            tasks.append(worker.set_parameters.remote(global_ref))
            tasks.append(worker.local_sgd.remote(learning_rate, num_steps))

        # Barrier: wait for every task, then surface the first failure
        ray.wait(tasks, num_returns=len(tasks))
        ray.get(tasks)
        self.last_aggregation_started_at = time.time()

        # Aggregate from snapshots taken strictly after the barrier
        n = self.num_workers
        results = ray.get(
            [w.get_parameters.remote() for w in self._workers]
            + [w.get_stats.remote() for w in self._workers]
        )
        snapshots, stats = results[:n], results[n:]
        parameters = average_parameters(snapshots)

        # Monitor on the noise-free gradient
        loss = self.monitor.value(parameters)
        grad_norm = l2_norm(self.monitor.gradient(parameters, delete_noise=True))
        if not (math.isfinite(loss) and math.isfinite(grad_norm)):
            if self.cfg.abort_on_divergence:
                raise DivergenceError(f"Round {r}: loss={loss} grad_norm={grad_norm}")
            logger.warning(f"[PR-SGD] round={r:3d} diverged: loss={loss} grad_norm={grad_norm}")

        self._parameters = parameters
        self._loss_history.append(loss)
        self._gradient_norm_history.append(grad_norm)
        logger.info(f"[PR-SGD] round={r:3d} loss={loss:.5f} grad_norm={grad_norm:.5f}")

        if self.metrics:
            for stat, num_steps in zip(stats, num_local_steps):
                self.metrics.record_worker(stat["worker_id"], r, stat["last_latency_ms"], num_steps)
            # Every worker receives and sends back d float64 values
            comm_bytes = 2 * n * self.input_dim * 8
            self.metrics.record_round(r, loss, grad_norm, comm_bytes=comm_bytes)

    def worker_stats(self) -> list[dict]:
        return ray.get([w.get_stats.remote() for w in self._workers])

    def show_loss(self) -> str:
        """Loss and gradient norm evolution until the last round"""
        return (
            "Loss evolution\n"
            + ", ".join(str(v) for v in self._loss_history)
            + "\n\nGradient Norm evolution\n"
            + ", ".join(str(v) for v in self._gradient_norm_history)
        )

    def shutdown(self):
        for w in self._workers:
            ray.kill(w)
        self._workers = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
