"""
Metrics logging for training monitoring.

Consumes EpisodeSummary records from the collectors and TrainingStats from
the trainer. Keeps cumulative game outcomes plus rolling windows for
rewards, game lengths and PPO diagnostics, and mirrors them to
TensorBoard when it is available.
"""

import json
import logging
import time
from collections import deque
from dataclasses import asdict
from pathlib import Path
from typing import Any, Deque, Dict, Optional

import numpy as np

from .ppo_trainer import TrainingStats
from .rollout_buffer import EpisodeSummary

try:
    from torch.utils.tensorboard import SummaryWriter
    HAS_TENSORBOARD = True
except ImportError:
    HAS_TENSORBOARD = False
    SummaryWriter = None

logger = logging.getLogger(__name__)

DIAGNOSTICS = ("policy_loss", "value_loss", "entropy", "kl_divergence", "clip_fraction")


class MetricsLogger:
    """
    Tracks game results and update diagnostics for one training run.

    Game counters are cumulative since the last reset(); everything else is
    averaged over the last `metrics_window` games or updates.
    """

    def __init__(self,
                 log_dir: Optional[str] = None,
                 experiment_name: Optional[str] = None,
                 console_log_interval: int = 1,
                 use_tensorboard: bool = False,
                 metrics_window: int = 100):
        """
        Args:
            log_dir: Directory for TensorBoard runs and the final summary;
                None keeps everything in memory
            experiment_name: Run name used for the TensorBoard directory and
                summary file
            console_log_interval: Iterations between console reports
            use_tensorboard: Write scalars with SummaryWriter
            metrics_window: Games or updates kept for rolling averages
        """
        self.log_dir = Path(log_dir) if log_dir else None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self.experiment_name = experiment_name or f"mimic_rl_{int(time.time())}"
        self.console_log_interval = max(1, console_log_interval)
        self.metrics_window = metrics_window
        self.use_tensorboard = use_tensorboard
        self.writer = None

        self.reset()

    def reset(self):
        """Forget all results; reopens TensorBoard after close()"""
        if self.writer is None:
            self._open_writer()

        self.games = 0
        self.iterations = 0
        self.outcome_counts = {"win": 0, "loss": 0, "tie": 0}
        self.best_reward = float("-inf")
        self.start_time = time.time()

        self.rewards: Deque[float] = deque(maxlen=self.metrics_window)
        self.lengths: Deque[int] = deque(maxlen=self.metrics_window)
        self.recent_outcomes: Deque[str] = deque(maxlen=self.metrics_window)
        self.diagnostics: Dict[str, Deque[float]] = {
            name: deque(maxlen=self.metrics_window) for name in DIAGNOSTICS
        }
        self.last_stats: Optional[TrainingStats] = None

    def _open_writer(self):
        if not self.use_tensorboard:
            return
        if not HAS_TENSORBOARD:
            logger.warning("TensorBoard requested but not installed. Install with: pip install tensorboard")
            return
        if self.log_dir is None:
            logger.warning("TensorBoard requested without a log directory; skipping")
            return
        tb_dir = self.log_dir / "tensorboard" / self.experiment_name
        self.writer = SummaryWriter(str(tb_dir))
        logger.info(f"TensorBoard logging to: {tb_dir}")

    def log_episode(self, summary: EpisodeSummary):
        """Record one finished game"""
        self.games += 1
        self.outcome_counts[summary.outcome] = self.outcome_counts.get(summary.outcome, 0) + 1
        self.recent_outcomes.append(summary.outcome)
        self.rewards.append(float(summary.reward))
        self.lengths.append(int(summary.length))
        self.best_reward = max(self.best_reward, float(summary.reward))

        if self.writer:
            self.writer.add_scalar("game/reward", summary.reward, self.games)
            self.writer.add_scalar("game/length", summary.length, self.games)
            self.writer.add_scalar("game/win", float(summary.outcome == "win"), self.games)

    def log_training_update(self, iteration: int, stats: TrainingStats):
        """Record the diagnostics of one PPO update"""
        self.iterations = iteration
        self.last_stats = stats
        for name in DIAGNOSTICS:
            self.diagnostics[name].append(float(getattr(stats, name)))

        if self.writer:
            for name in DIAGNOSTICS:
                self.writer.add_scalar(f"train/{name}", getattr(stats, name), self.games)
            self.writer.add_scalar("train/win_rate", self.get_win_rate(), self.games)
            self.writer.add_scalar("train/recent_win_rate", self.get_recent_win_rate(), self.games)

        if iteration % self.console_log_interval == 0:
            self._log_to_console()

    def get_win_rate(self) -> float:
        """Win rate over every game since the last reset"""
        return self.outcome_counts["win"] / self.games if self.games else 0.0

    def get_recent_win_rate(self) -> float:
        if not self.recent_outcomes:
            return 0.0
        return sum(1 for o in self.recent_outcomes if o == "win") / len(self.recent_outcomes)

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            "games": self.games,
            "iterations": self.iterations,
            "elapsed_time": time.time() - self.start_time,
            "wins": self.outcome_counts["win"],
            "losses": self.outcome_counts["loss"],
            "ties": self.outcome_counts["tie"],
            "win_rate": self.get_win_rate(),
            "recent_win_rate": self.get_recent_win_rate(),
        }
        if self.rewards:
            stats["reward_mean"] = float(np.mean(self.rewards))
            stats["reward_std"] = float(np.std(self.rewards))
            stats["best_reward"] = self.best_reward
        if self.lengths:
            stats["game_length_mean"] = float(np.mean(self.lengths))
        for name, values in self.diagnostics.items():
            if values:
                stats[f"{name}_mean"] = float(np.mean(values))
                stats[f"{name}_last"] = values[-1]
        return stats

    def close(self):
        """Flush TensorBoard and write the run summary"""
        if self.writer:
            self.writer.close()
            self.writer = None

        if self.log_dir is not None:
            self._save_final_stats()

    def _log_to_console(self):
        wins, losses, ties = (self.outcome_counts[k] for k in ("win", "loss", "tie"))
        lines = [
            f"Iteration {self.iterations:,} | Games {self.games:,} | "
            f"{self._format_time(time.time() - self.start_time)}",
            f"W/L/T {wins}/{losses}/{ties} | win rate {self.get_win_rate():.2%} "
            f"(last {len(self.recent_outcomes)}: {self.get_recent_win_rate():.2%})",
        ]
        if self.rewards:
            lines.append(f"Reward {np.mean(self.rewards):.3f} | "
                         f"game length {np.mean(self.lengths):.1f} decisions")
        if self.last_stats is not None:
            lines.append(" | ".join(f"{name} {getattr(self.last_stats, name):.4f}"
                                    for name in DIAGNOSTICS))
        logger.info("\n".join(lines))

    @staticmethod
    def _format_time(seconds: float) -> str:
        seconds = int(seconds)
        hours, remainder = divmod(seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    def _save_final_stats(self):
        stats_file = self.log_dir / f"{self.experiment_name}_final_stats.json"
        summary = {
            "experiment_name": self.experiment_name,
            "games": self.games,
            "iterations": self.iterations,
            "training_time": time.time() - self.start_time,
            "outcomes": dict(self.outcome_counts),
            "win_rate": self.get_win_rate(),
            "rewards": self._summarize(self.rewards),
            "game_lengths": self._summarize(self.lengths),
            "last_update": asdict(self.last_stats) if self.last_stats else None,
        }
        with open(stats_file, 'w') as f:
            json.dump(summary, f, indent=2)
        logger.info(f"Saved final statistics to: {stats_file}")

    @staticmethod
    def _summarize(values) -> Optional[Dict[str, float]]:
        if not values:
            return None
        array = np.asarray(values, dtype=np.float64)
        return {
            "mean": float(array.mean()),
            "std": float(array.std()),
            "min": float(array.min()),
            "max": float(array.max()),
        }
