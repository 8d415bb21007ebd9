"""
End-to-end tests for the command-line driver and the plotting tool.
"""

import json

import pytest
import ray

import prsgd
from prsgd import main as prsgd_main
from prsgd import plot
from prsgd.config import TrainConfig
from prsgd.errors import InvalidConstructionError


class TestBuildLossFunctions:
    def test_centers(self):
        cfg = TrainConfig(d=3, num_workers=3, noisy=False)
        losses = prsgd_main.build_loss_functions(cfg)

        assert len(losses) == 3
        for w, loss in enumerate(losses):
            assert loss.centers.tolist() == [i + w * w for i in range(3)]
            assert loss.coeffs.tolist() == [1.0, 1.0, 1.0]
            assert loss.noisy is False

    def test_parse_local_steps(self):
        assert prsgd_main.parse_local_steps([5], 3) == [5, 5, 5]
        assert prsgd_main.parse_local_steps([1, 2, 3], 3) == [1, 2, 3]
        with pytest.raises(SystemExit):
            prsgd_main.parse_local_steps([1, 2], 3)


class TestMain:
    """Run the driver on a tiny problem and plot the result."""

    @pytest.mark.parametrize("extra", [[], ["--shared"]])
    def test_run_and_plot(self, ray_session, tmp_path, capsys, extra):
        argv = [
            "--num-workers", "2",
            "--dim", "4",
            "--rounds", "3",
            "--local-steps", "5", "2",
            "--lr", "0.05",
            "--no-noise",
            "--outdir", str(tmp_path / "runs"),
            "--run-name", "tiny",
        ] + extra

        coordinator = prsgd_main.main(argv)

        assert len(coordinator.loss_history) == 3
        assert coordinator.loss_history[-1] < coordinator.loss_history[0]

        run_dir = tmp_path / "runs" / "tiny"
        config = json.loads((run_dir / "config.json").read_text())
        meta = json.loads((run_dir / "meta.json").read_text())
        events = [json.loads(line) for line in (run_dir / "events.jsonl").read_text().splitlines()]

        assert config["local_steps"] == [5, 2]
        assert config["shared"] == bool(extra)
        assert meta["run_id"] == "tiny"
        assert "training_time_sec" in meta
        assert sum(e["event_type"] == "round" for e in events) == 3
        assert sum(e["event_type"] == "worker" for e in events) == 6

        out = capsys.readouterr().out
        assert "Loss evolution" in out
        assert "Gradient Norm evolution" in out

        plots = tmp_path / "plots"
        assert plot.main([str(run_dir), "--outdir", str(plots)]) == 0
        for name in ("loss_vs_rounds.png", "grad_norm_vs_rounds.png", "worker_latency.png"):
            assert (plots / name).exists()

        run = plot.load_run(run_dir)
        assert run["duration_sec"] == meta["training_time_sec"]
        assert run_label_has_steps(plot.run_label(run))


    def test_construction_failure_still_writes_meta(self, ray_session, tmp_path):
        argv = [
            "--num-workers", "2",
            "--dim", "4",
            "--rounds", "1",
            "--init-low", "5",
            "--init-high", "5",
            "--outdir", str(tmp_path / "runs"),
            "--run-name", "bad-range",
        ]

        with pytest.raises(InvalidConstructionError):
            prsgd_main.main(argv)

        meta = json.loads((tmp_path / "runs" / "bad-range" / "meta.json").read_text())
        assert meta["run_id"] == "bad-range"
        assert "training_time_sec" not in meta
        # The session owns Ray, so the driver leaves it running
        assert ray.is_initialized()


def run_label_has_steps(label):
    return "K=[5, 2]" in label


class TestPackage:
    def test_version(self):
        assert prsgd.__version__ == "0.1.0"


class TestPlot:
    def test_no_runs(self, tmp_path, capsys):
        assert plot.main([str(tmp_path / "missing")]) == 1
        assert "No valid run directories" in capsys.readouterr().out
