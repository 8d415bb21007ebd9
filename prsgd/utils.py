from __future__ import annotations
import random
import logging
import sys
import time
import numpy as np
import torch


def setup_actor_logging():
    """Configure logging for Ray actors (they run in separate processes).

    Ray actors run in separate processes. When we import logger from prsgd.logger
    in an actor, the module-level configuration should execute, but we ensure
    it's properly set up by reconfiguring if needed (to handle any edge cases
    with Ray's process isolation).
    """
    from prsgd.logger import logger as actor_logger

    if not actor_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(logging.INFO)
        formatter = logging.Formatter(fmt='[%(asctime)s] %(levelname)-8s %(message)s', datefmt='%H:%M:%S')
        handler.setFormatter(formatter)
        actor_logger.addHandler(handler)
        actor_logger.setLevel(logging.DEBUG)

    return actor_logger


def set_seed(seed: int = 1337):
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)


def as_vector(x) -> torch.Tensor:
    """View any 1-D sequence as a float64 tensor (no copy when already one)."""
    return torch.as_tensor(x, dtype=torch.float64)


def l2_norm(v: torch.Tensor) -> float:
    return float(torch.linalg.vector_norm(v))


# Simulate worker heterogeneity by sleeping (in seconds)
def sleep_heterogeneity(worker_id: int, base: float, jitter: float, straggler_every: int = 0, step: int = 0):
    """Simulate worker delays

    - base/jitter: adds small random delay to every step (if base > 0)
    - straggler_every: worker 0 becomes 5x slower every N steps (if > 0)
    """
    delay = 0.0

    # Base delay with jitter (applies every step if base > 0)
    if base > 0:
        delay = max(0.0, np.random.normal(loc=base, scale=jitter))

    # Periodic straggler: worker 0 gets 5x slower every straggler_every steps
    if worker_id == 0 and straggler_every != 0 and step != 0 and step % straggler_every == 0:
        delay += base * 5.0 if base > 0 else 0.1  # at least 0.1s if no base delay

    if delay > 0:
        time.sleep(delay)
    return delay
