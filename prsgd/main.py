# prsgd/main.py
"""
Parallel Restarted SGD on synthetic quadratic losses, on a single machine.

Every worker is a Ray actor running local SGD on its own quadratic loss
(worker w is centered at (i + w^2)_i); after each round the workers'
parameters are averaged. The loss and gradient-norm histories of the
average loss are printed and saved under the run directory.

Prereqs (Python 3.9+):
    pip install ray torch

Run examples:
    python -m prsgd.main
    python -m prsgd.main --num-workers 8 --dim 64 --rounds 30 --local-steps 20
    python -m prsgd.main --local-steps 100 10 10 10     # worker 0 does more local steps
    python -m prsgd.main --shared --no-noise            # every worker optimizes the average loss
"""

from __future__ import annotations
import argparse
import json
import socket
import time
from datetime import datetime
from pathlib import Path

import ray
import torch

from prsgd.config import TrainConfig
from prsgd.coordinator import Coordinator
from prsgd.logger import logger
from prsgd.losses import AverageLoss, QuadraticLoss
from prsgd.metrics import MetricsCollector
from prsgd.utils import set_seed


def build_loss_functions(cfg: TrainConfig) -> list[QuadraticLoss]:
    """One isotropic quadratic per worker; worker w is centered at (i + w^2)_i."""
    centers = torch.empty(cfg.d, dtype=torch.float64)
    loss_functions = []
    for w in range(cfg.num_workers):
        for i in range(cfg.d):
            centers[i] = i + w * w
        # centers is copied by QuadraticLoss, so the buffer can be reused
        loss_functions.append(QuadraticLoss.isotropic(cfg.d, centers, noisy=cfg.noisy, seed=cfg.seed + w))
    return loss_functions


def parse_local_steps(values: list[int], num_workers: int) -> list[int]:
    """A single value applies to every worker, otherwise one value per worker."""
    if len(values) == 1:
        return values * num_workers
    if len(values) != num_workers:
        raise SystemExit(f"--local-steps takes 1 or {num_workers} values, got {len(values)}")
    return values


def main(argv=None):
    parser = argparse.ArgumentParser(description="Parallel Restarted SGD on quadratic losses")
    parser.add_argument("--num-workers", type=int, default=4)
    parser.add_argument("--dim", type=int, default=256)
    parser.add_argument("--rounds", type=int, default=50, help="Number of PR-SGD rounds")
    parser.add_argument("--local-steps", type=int, nargs="+", default=[100], help="Local SGD steps (one value, or one per worker)")
    parser.add_argument("--lr", type=float, default=0.01)
    parser.add_argument("--seed", type=int, default=1337)
    parser.add_argument("--no-noise", action="store_true", help="Disable gradient noise")
    parser.add_argument("--shared", action="store_true", help="Every worker optimizes the average loss")
    parser.add_argument("--init-low", type=float, default=-10.0)
    parser.add_argument("--init-high", type=float, default=10.0)
    parser.add_argument("--hetero-base", type=float, default=0.0, help="Worker delay baseline in seconds (default: 0.0 = no delays)")
    parser.add_argument("--hetero-jitter", type=float, default=0.0, help="Worker delay jitter (default: 0.0)")
    parser.add_argument(
        "--hetero-straggler-every", type=int, default=0, help="Make worker 0 a straggler every N steps (default: 0 = disabled)"
    )
    parser.add_argument("--abort-on-divergence", action="store_true", help="Stop when the loss becomes NaN/inf")
    parser.add_argument("--outdir", type=str, default="runs", help="Output directory for logs and metrics")
    parser.add_argument("--run-name", type=str, default=None, help="Custom run name (default: auto-generated)")
    parser.add_argument("--no-logging", action="store_true", help="Disable metrics logging")
    args = parser.parse_args(argv)

    local_steps = parse_local_steps(args.local_steps, args.num_workers)
    cfg = TrainConfig(
        d=args.dim,
        num_workers=args.num_workers,
        lr=args.lr,
        num_rounds=args.rounds,
        local_steps=local_steps[0],
        init_low=args.init_low,
        init_high=args.init_high,
        noisy=not args.no_noise,
        seed=args.seed,
        hetero_base=args.hetero_base,
        hetero_jitter=args.hetero_jitter,
        hetero_straggler_every=args.hetero_straggler_every,
        abort_on_divergence=args.abort_on_divergence,
    )
    set_seed(cfg.seed)

    run_id = args.run_name
    if not run_id:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        run_id = f"{timestamp}-prsgd-w{cfg.num_workers}-d{cfg.d}-r{cfg.num_rounds}-s{cfg.seed}"

    run_dir = Path(args.outdir) / run_id
    run_dir.mkdir(parents=True, exist_ok=True)

    metrics = None
    if not args.no_logging:
        metrics = MetricsCollector(run_id=run_id)

    config_dict = {
        **vars(cfg),
        "mode": "prsgd",
        "local_steps": local_steps,
        "shared": args.shared,
        "outdir": args.outdir,
        "run_name": args.run_name,
        "no_logging": args.no_logging,
    }
    with open(run_dir / "config.json", "w") as f:
        json.dump(config_dict, f, indent=2)

    meta_dict = {
        "run_id": run_id,
        "mode": "prsgd",
        "hostname": socket.gethostname(),
        "timestamp": datetime.now().isoformat(),
        "torch_version": torch.__version__,
        "ray_version": ray.__version__,
    }

    owns_ray = not ray.is_initialized()
    if owns_ray:
        ray.init(ignore_reinit_error=True, include_dashboard=False)

    coordinator = None
    try:
        loss_functions = build_loss_functions(cfg)
        kwargs = dict(
            init_range=(cfg.init_low, cfg.init_high),
            seed=cfg.seed,
            cfg=cfg,
            metrics=metrics,
        )
        if args.shared:
            coordinator = Coordinator.shared(cfg.num_workers, AverageLoss(loss_functions), **kwargs)
        else:
            coordinator = Coordinator(loss_functions, **kwargs)

        t0 = time.time()
        coordinator.run_prsgd(cfg.num_rounds, local_steps, cfg.lr)
        dt = time.time() - t0
        logger.info(f"Elapsed: {dt:.2f}s")
        meta_dict["training_time_sec"] = dt

        print(coordinator.show_loss())

        if metrics:
            metrics.write_jsonl(run_dir / "events.jsonl")
            summary = metrics.get_summary()
            print(f"\nMetrics summary:")
            for key, value in summary.items():
                if key not in ("mode", "run_id"):
                    print(f"  {key}: {value}")
    finally:
        with open(run_dir / "meta.json", "w") as f:
            json.dump(meta_dict, f, indent=2)
        if coordinator is not None:
            coordinator.shutdown()
        if owns_ray:
            ray.shutdown()

    return coordinator


if __name__ == "__main__":
    main()
