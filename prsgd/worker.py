from __future__ import annotations
import time

import ray
import torch

from prsgd.errors import DimensionMismatchError
from prsgd.losses import LossFunction
from prsgd.utils import as_vector, setup_actor_logging, sleep_heterogeneity


class Worker:
    """A PR-SGD worker: runs local SGD on its own copy of the parameters.

    Args:
        worker_id: Worker identifier
        loss_fn: Loss function optimized by this worker (may be shared)
        start_delay: Simulated delay in seconds before every local phase
        hetero_base/hetero_jitter/hetero_straggler_every: Per-step delay model,
            see utils.sleep_heterogeneity
    """

    def __init__(
        self,
        worker_id: int,
        loss_fn: LossFunction,
        start_delay: float = 0.0,
        hetero_base: float = 0.0,
        hetero_jitter: float = 0.0,
        hetero_straggler_every: int = 0,
    ):
        self.id = worker_id
        self.loss_fn = loss_fn
        self.start_delay = start_delay
        self.hetero_base = hetero_base
        self.hetero_jitter = hetero_jitter
        self.hetero_straggler_every = hetero_straggler_every
        self.log = setup_actor_logging()

        self._params = torch.zeros(loss_fn.input_dim, dtype=torch.float64)

        self.stats = {
            "worker_id": worker_id,
            "total_steps": 0,
            "last_latency_ms": 0.0,
            "last_finished_at": None,
        }

    def set_parameters(self, parameters):
        parameters = as_vector(parameters)
        if parameters.shape != self._params.shape:
            raise DimensionMismatchError(
                f"Worker {self.id} expects {self._params.shape[0]} parameters, got {tuple(parameters.shape)}"
            )
        self._params.copy_(parameters)

    def get_parameters(self) -> torch.Tensor:
        # Snapshot: the caller never sees later in-place updates
        return self._params.clone()

    def local_sgd(self, learning_rate: float, num_steps: int):
        """Run num_steps steps of SGD on the loss function, updating the local parameters in place."""
        if num_steps < 0:
            raise ValueError(f"num_steps must be non negative, got {num_steps}")

        t0 = time.time()
        if self.start_delay > 0:
            time.sleep(self.start_delay)

        for step in range(num_steps):
            sleep_heterogeneity(
                self.id,
                self.hetero_base,
                self.hetero_jitter,
                self.hetero_straggler_every,
                step=step,
            )
            grad = self.loss_fn.gradient(self._params)
            self._params -= learning_rate * grad

        self.stats["total_steps"] += num_steps
        self.stats["last_finished_at"] = time.time()
        self.stats["last_latency_ms"] = (self.stats["last_finished_at"] - t0) * 1000
        self.log.debug(f"Worker {self.id} finished {num_steps} local steps in {self.stats['last_latency_ms']:.2f}ms")

    def get_stats(self) -> dict:
        return dict(self.stats)


RemoteWorker = ray.remote(Worker)
