from dataclasses import dataclass


@dataclass
class TrainConfig:
    d: int = 256  # parameter dimension
    num_workers: int = 4
    lr: float = 0.01  # learning rate
    num_rounds: int = 50  # PR-SGD rounds (averaging steps)
    local_steps: int = 100  # local SGD steps per worker per round
    init_low: float = -10.0  # global vector drawn from U(init_low, init_high)
    init_high: float = 10.0
    noisy: bool = True  # add stochastic noise to worker gradients
    seed: int = 1337
    hetero_base: float = 0.0  # baseline worker delay per step in seconds (0 = no delays)
    hetero_jitter: float = 0.0  # jitter in worker delay
    hetero_straggler_every: int = 0  # straggler frequency (0 = disabled)
    abort_on_divergence: bool = False  # raise instead of warn on NaN/inf diagnostics
