"""
Checkpoint manager for saving and loading weight bundles.

Checkpoints are weight bundles written to a KeyValueStore, with a
configurable retention policy.
"""

import time
import uuid
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict
import logging

from ..storage import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class CheckpointInfo:
    """Information about a saved checkpoint"""
    checkpoint_id: str
    games_completed: int
    timestamp: float
    win_rate: float = 0.0
    mean_reward: float = 0.0
    tag: Optional[str] = None
    is_best: bool = False
    metadata: Optional[Dict[str, Any]] = None


class CheckpointManager:
    """
    Manages agent checkpoints during training.

    Features:
    - Save a bundle under its own key and as the current model
    - Keep best performing checkpoint (by win rate)
    - Maintain rolling window of recent checkpoints
    """

    def __init__(self,
                 store: KeyValueStore,
                 prefix: str = "mimic_rl",
                 keep_recent: int = 5,
                 keep_best: bool = True):
        """
        Initialize checkpoint manager.

        Args:
            store: Storage backend
            prefix: Key prefix for everything this manager writes
            keep_recent: Number of recent checkpoints to keep
            keep_best: Whether to keep the best performing checkpoint
        """
        self.store = store
        self.prefix = prefix
        self.keep_recent = keep_recent
        self.keep_best = keep_best

        # State
        self.best_metric_value = -float('inf')
        self.checkpoints: List[CheckpointInfo] = []

        # Load existing checkpoints
        self._load_checkpoint_history()

        logger.info(f"CheckpointManager initialized: prefix={prefix}, "
                    f"keep best: {keep_best}, keep recent: {keep_recent}")

    @property
    def current_key(self) -> str:
        return f"{self.prefix}_current_model"

    @property
    def history_key(self) -> str:
        return f"{self.prefix}_checkpoint_history"

    def save(self,
             bundle: Dict[str, Any],
             games_completed: int,
             metrics: Optional[Dict[str, float]] = None,
             tag: Optional[str] = None) -> str:
        """
        Save a checkpoint.

        Args:
            bundle: Weight bundle to store
            games_completed: Games played when the checkpoint was taken
            metrics: Current metrics (win_rate, mean_reward, ...)
            tag: Optional label such as "auto" or "stop"

        Returns:
            Id of the saved checkpoint
        """
        metrics = metrics or {}
        timestamp = time.time()
        checkpoint_id = f"{self.prefix}_checkpoint_{games_completed}_{uuid.uuid4().hex[:8]}"

        record = {
            "bundle": bundle,
            "games_completed": games_completed,
            "metrics": metrics,
            "tag": tag,
            "timestamp": timestamp,
        }
        self.store.set(checkpoint_id, record)
        self.store.set(self.current_key, record)

        info = CheckpointInfo(
            checkpoint_id=checkpoint_id,
            games_completed=games_completed,
            timestamp=timestamp,
            win_rate=float(metrics.get("win_rate", 0.0)),
            mean_reward=float(metrics.get("mean_reward", 0.0)),
            tag=tag,
            is_best=self._is_best(metrics),
            metadata=metrics,
        )
        if info.is_best:
            for checkpoint in self.checkpoints:
                checkpoint.is_best = False
        self.checkpoints.append(info)

        # Clean up old checkpoints
        self._cleanup_old_checkpoints()

        # Save checkpoint history
        self._save_checkpoint_history()

        logger.info(f"Saved checkpoint: {checkpoint_id} (games: {games_completed}, tag: {tag})")
        return checkpoint_id

    def load(self, checkpoint_id: str) -> Optional[Dict[str, Any]]:
        """Load a specific checkpoint record"""
        record = self.store.get(checkpoint_id)
        if record is None:
            logger.error(f"Checkpoint not found: {checkpoint_id}")
            return None
        logger.info(f"Loaded checkpoint: {checkpoint_id}")
        return record

    def load_latest(self) -> Optional[Dict[str, Any]]:
        """Load the most recently saved model"""
        record = self.store.get(self.current_key)
        if record is None and self.checkpoints:
            return self.load(self.checkpoints[-1].checkpoint_id)
        return record

    def load_best(self) -> Optional[Dict[str, Any]]:
        """Load the best performing checkpoint"""
        best_checkpoints = [c for c in self.checkpoints if c.is_best]
        if best_checkpoints:
            return self.load(best_checkpoints[-1].checkpoint_id)
        return None

    def delete(self, checkpoint_id: str) -> bool:
        """Delete a checkpoint and its history entry"""
        removed = self.store.delete(checkpoint_id)
        self.checkpoints = [c for c in self.checkpoints if c.checkpoint_id != checkpoint_id]
        self._save_checkpoint_history()
        return removed

    def list_checkpoints(self) -> List[CheckpointInfo]:
        return list(self.checkpoints)

    def get_statistics(self) -> Dict[str, Any]:
        """Get information about saved checkpoints"""
        latest = self.checkpoints[-1] if self.checkpoints else None
        best = next((c for c in self.checkpoints if c.is_best), None)
        return {
            "total_checkpoints": len(self.checkpoints),
            "best_checkpoint": best.checkpoint_id if best else None,
            "latest_checkpoint": latest.checkpoint_id if latest else None,
            "best_win_rate": self.best_metric_value if best else None,
        }

    def _is_best(self, metrics: Dict[str, float]) -> bool:
        """Check if current metrics are best so far"""
        if not self.keep_best or "win_rate" not in metrics:
            return False

        metric_value = float(metrics["win_rate"])
        if metric_value > self.best_metric_value:
            self.best_metric_value = metric_value
            return True

        return False

    def _cleanup_old_checkpoints(self):
        """Remove old checkpoints according to retention policy"""
        if self.keep_recent <= 0:
            return

        # Keep only recent checkpoints (excluding best)
        non_best = [c for c in self.checkpoints if not c.is_best]
        to_remove = non_best[:-self.keep_recent] if len(non_best) > self.keep_recent else []

        for checkpoint in to_remove:
            self.store.delete(checkpoint.checkpoint_id)
            self.checkpoints.remove(checkpoint)
            logger.info(f"Removed old checkpoint: {checkpoint.checkpoint_id}")

    def _save_checkpoint_history(self):
        """Save checkpoint history to the store"""
        self.store.set(self.history_key, {
            "checkpoints": [asdict(c) for c in self.checkpoints],
            "best_metric_value": self.best_metric_value if self.best_metric_value != -float('inf') else None,
        })

    def _load_checkpoint_history(self):
        """Load checkpoint history from the store"""
        history = self.store.get(self.history_key)
        if not history:
            return

        try:
            self.checkpoints = [
                CheckpointInfo(**c) for c in history.get("checkpoints", [])
            ]
            best = history.get("best_metric_value")
            self.best_metric_value = -float('inf') if best is None else float(best)

            # Drop entries whose records are gone
            self.checkpoints = [c for c in self.checkpoints if c.checkpoint_id in self.store]

            logger.info(f"Loaded {len(self.checkpoints)} checkpoints from history")

        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to load checkpoint history: {e}")
