"""
Metrics collection for PR-SGD runs.

Collects metrics in-memory during training and writes to JSONL at the end
to minimize performance impact.
"""

from __future__ import annotations
import json
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional


@dataclass
class MetricEvent:
    """Unified event schema for all metrics."""
    event_type: str  # "round", "worker", "final"
    step: int
    timestamp: float
    loss: Optional[float] = None
    grad_norm: Optional[float] = None
    comm_bytes: Optional[int] = None
    latency_ms: Optional[float] = None
    local_steps: Optional[int] = None
    worker_id: Optional[int] = None
    mode: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary, omitting None values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None}


class MetricsCollector:
    """In-memory metrics collector for PR-SGD runs."""

    def __init__(self, run_id: str, mode: str = "prsgd"):
        self.mode = mode
        self.run_id = run_id
        self.events: list[MetricEvent] = []
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

        # Aggregated stats
        self.total_comm_bytes = 0
        self.loss_history: list[tuple[int, float]] = []  # (round, loss)

    def start_training(self):
        """Mark training start time."""
        self.start_time = time.time()

    def stop_training(self):
        """Mark training end time."""
        self.end_time = time.time()

    def record_worker(self, worker_id: int, step: int, latency_ms: float, local_steps: int = 0):
        """Record one worker's local phase.

        Args:
            worker_id: Worker identifier
            step: Round the local phase belongs to
            latency_ms: Duration of the local phase in milliseconds
            local_steps: Number of local SGD steps performed
        """
        event = MetricEvent(
            event_type="worker",
            step=step,
            timestamp=time.time(),
            latency_ms=latency_ms,
            local_steps=local_steps,
            worker_id=worker_id,
            mode=self.mode,
        )
        self.events.append(event)

    def record_round(self, step: int, loss: float, grad_norm: float, comm_bytes: int = 0):
        """Record a completed averaging round.

        Args:
            step: Round number (1-based)
            loss: Monitoring loss after averaging
            grad_norm: Noise-free gradient norm after averaging
            comm_bytes: Communication bytes for this round
        """
        event = MetricEvent(
            event_type="round",
            step=step,
            timestamp=time.time(),
            loss=loss,
            grad_norm=grad_norm,
            comm_bytes=comm_bytes if comm_bytes > 0 else None,
            mode=self.mode,
        )
        self.events.append(event)
        self.loss_history.append((step, loss))
        self.total_comm_bytes += comm_bytes

    def record_final(self, step: int, loss: float, grad_norm: float):
        event = MetricEvent(
            event_type="final",
            step=step,
            timestamp=time.time(),
            loss=loss,
            grad_norm=grad_norm,
            mode=self.mode,
        )
        self.events.append(event)

    def get_summary(self) -> dict:
        """Return aggregated summary statistics."""
        if not self.events:
            return {}

        rounds = [e for e in self.events if e.event_type == "round"]
        workers = [e for e in self.events if e.event_type == "worker"]

        summary = {
            "mode": self.mode,
            "run_id": self.run_id,
            "total_events": len(self.events),
            "total_comm_bytes": self.total_comm_bytes,
        }

        if self.start_time and self.end_time:
            summary["training_time_sec"] = self.end_time - self.start_time

        if rounds:
            summary["num_rounds"] = len(rounds)
            summary["initial_loss"] = rounds[0].loss
            summary["final_loss"] = rounds[-1].loss
            summary["final_grad_norm"] = rounds[-1].grad_norm

        if workers:
            latencies = [e.latency_ms for e in workers if e.latency_ms is not None]
            if latencies:
                summary["avg_local_phase_ms"] = sum(latencies) / len(latencies)
                summary["max_local_phase_ms"] = max(latencies)

        return summary

    def write_jsonl(self, path: Path):
        """Write all events to a JSONL file.

        Args:
            path: Path to output JSONL file
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            for event in self.events:
                event_dict = event.to_dict()
                event_dict["run_id"] = self.run_id
                f.write(json.dumps(event_dict) + "\n")
