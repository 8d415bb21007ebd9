"""Loss functions optimized by PR-SGD workers.

Every loss function has a fixed input dimension ``d`` and exposes its value
and gradient at any vector of length ``d``. Gradients may carry stochastic
noise (emulating mini-batch sampling); ``delete_noise=True`` always returns
the exact gradient and is meant for diagnostics only.
"""

from __future__ import annotations
import threading
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Union

import numpy as np
import torch

from prsgd.errors import DimensionMismatchError, InvalidConstructionError
from prsgd.utils import as_vector


class LossFunction(ABC):
    """Value/gradient contract shared by all loss functions."""

    @property
    @abstractmethod
    def input_dim(self) -> int:
        ...

    @abstractmethod
    def value(self, x) -> float:
        ...

    @abstractmethod
    def gradient(self, x, delete_noise: bool = False) -> torch.Tensor:
        ...

    def spawn(self) -> "LossFunction":
        """Return an equivalent function drawing noise from a new independent stream.

        Functions without a noise source return themselves.
        """
        return self

    def _check_dim(self, x) -> torch.Tensor:
        x = as_vector(x)
        if x.ndim != 1 or x.shape[0] != self.input_dim:
            raise DimensionMismatchError(
                f"Parameters dimension {tuple(x.shape)} must match the function's input dimension {self.input_dim}"
            )
        return x


class QuadraticLoss(LossFunction):
    """Q(x) = a1 (x1 - c1)^2 + ... + ad (xd - cd)^2

    Args:
        coeffs: Non-negative coefficients a1..ad
        centers: Centers c1..cd (default: zeros). Copied, so the caller may
            reuse the array afterwards.
        noisy: Add noise max(1, |xi - ci|) * U(-1, 1) to each gradient coordinate
        seed: Seed (or SeedSequence) of the noise generator
    """

    def __init__(
        self,
        coeffs: Sequence[float],
        centers: Optional[Sequence[float]] = None,
        noisy: bool = True,
        seed: Union[int, np.random.SeedSequence, None] = None,
    ):
        coeffs = as_vector(coeffs).clone()
        if coeffs.ndim != 1 or coeffs.numel() == 0:
            raise InvalidConstructionError("Coefficients must be a non-empty 1-D array")
        if bool((coeffs < 0).any()):
            raise InvalidConstructionError("All coefficients must be non negative")
        self._coeffs = coeffs

        if centers is None:
            self._centers = torch.zeros_like(coeffs)
        else:
            centers = as_vector(centers).clone()
            if centers.shape != coeffs.shape:
                raise InvalidConstructionError("Must have as many centers as coefficients")
            self._centers = centers

        self.noisy = noisy

        # Noise source: owned generator, draws serialized for concurrent callers
        if not isinstance(seed, np.random.SeedSequence):
            seed = np.random.SeedSequence(seed)
        self._seed_seq = seed
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    @classmethod
    def isotropic(cls, dim: int, centers=None, noisy: bool = True, seed=None) -> "QuadraticLoss":
        """Quadratic with all coefficients equal to 1."""
        return cls(torch.ones(dim, dtype=torch.float64), centers=centers, noisy=noisy, seed=seed)

    @property
    def input_dim(self) -> int:
        return self._coeffs.shape[0]

    @property
    def coeffs(self) -> torch.Tensor:
        return self._coeffs.clone()

    @property
    def centers(self) -> torch.Tensor:
        return self._centers.clone()

    def value(self, x) -> float:
        x = self._check_dim(x)
        diff = x - self._centers
        return float(torch.sum(self._coeffs * diff * diff))

    def gradient(self, x, delete_noise: bool = False) -> torch.Tensor:
        x = self._check_dim(x)
        diff = x - self._centers
        grad = 2 * self._coeffs * diff
        if self.noisy and not delete_noise:
            grad += self.generate_noise(diff)
        return grad

    def generate_noise(self, diff: torch.Tensor) -> torch.Tensor:
        """Per-coordinate noise max(1, |diff|) * U(-1, 1), fresh on every call."""
        with self._lock:
            u = self._rng.uniform(-1.0, 1.0, size=diff.shape[0])
        return torch.clamp(diff.abs(), min=1.0) * torch.from_numpy(u)

    def spawn(self) -> "QuadraticLoss":
        # Every call advances the parent sequence, so no two children share a stream
        with self._lock:
            child = self._seed_seq.spawn(1)[0]
        return QuadraticLoss(self._coeffs, self._centers, noisy=self.noisy, seed=child)

    # threading.Lock cannot be pickled; Ray ships loss functions to actors
    def __getstate__(self):
        state = self.__dict__.copy()
        del state["_lock"]
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self._lock = threading.Lock()

    def __repr__(self):
        return f"QuadraticLoss(d={self.input_dim}, noisy={self.noisy})"


class AverageLoss(LossFunction):
    """Average of multiple loss functions having the same input dimension"""

    def __init__(self, loss_functions: Sequence[LossFunction]):
        loss_functions = list(loss_functions)
        if not loss_functions:
            raise InvalidConstructionError("Need at least one loss function to average")

        dim = loss_functions[0].input_dim
        for loss_fn in loss_functions:
            if loss_fn.input_dim != dim:
                raise InvalidConstructionError(
                    "All the loss functions to average must have the same input dimension"
                )

        self._loss_functions = loss_functions
        self._input_dim = dim

    @property
    def input_dim(self) -> int:
        return self._input_dim

    @property
    def components(self) -> list[LossFunction]:
        return list(self._loss_functions)

    def value(self, x) -> float:
        x = self._check_dim(x)
        n = len(self._loss_functions)
        return sum(loss_fn.value(x) / n for loss_fn in self._loss_functions)

    def gradient(self, x, delete_noise: bool = False) -> torch.Tensor:
        x = self._check_dim(x)
        n = len(self._loss_functions)
        grad = torch.zeros(self._input_dim, dtype=torch.float64)
        for loss_fn in self._loss_functions:
            grad += loss_fn.gradient(x, delete_noise) / n
        return grad

    def spawn(self) -> "AverageLoss":
        return AverageLoss([f.spawn() for f in self._loss_functions])

    def __repr__(self):
        return f"AverageLoss(n={len(self._loss_functions)}, d={self._input_dim})"
