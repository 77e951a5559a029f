#!/usr/bin/env python
"""
Main training script for mimic_rl.

Trains a self-play PPO agent on a gymnasium environment, writing
checkpoints and the opponent catalog to a JSON file store.
"""

import argparse
import asyncio
import logging
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path

import torch

# Add src directory to path for running from a checkout
sys.path.append(str(Path(__file__).parent.parent / "src"))

from mimic_rl.config import SessionConfig, load_config
from mimic_rl.environment import GymEnvironment
from mimic_rl.storage import JsonFileStore
from mimic_rl.training import TrainingSession

logger = logging.getLogger(__name__)


def setup_logging(log_dir: str, experiment_name: str):
    """Setup logging with both console and file handlers"""
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_file = Path(log_dir) / f"{experiment_name}_training.log"

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def generate_experiment_name() -> str:
    """Generate a unique experiment name based on timestamp"""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"mimic_rl_training_{timestamp}"


def resolve_device(device: str) -> str:
    if device != "auto":
        return device
    if torch.cuda.is_available():
        return "cuda"
    return "cpu"


def build_config(args) -> SessionConfig:
    """Merge the optional YAML config with command-line overrides"""
    config = load_config(args.config) if args.config else SessionConfig()

    if args.max_games is not None:
        config.max_games = args.max_games
    if args.parallel_games is not None:
        config.parallel_games = args.parallel_games
    if args.learning_rate is not None:
        config.ppo.learning_rate = args.learning_rate
    if args.rollout_length is not None:
        config.rollout.rollout_max_length = args.rollout_length
    if args.seed is not None:
        config.seed = args.seed

    config.ppo.device = resolve_device(args.device)
    config.log_dir = args.log_dir
    config.experiment_name = args.experiment_name
    config.use_tensorboard = args.tensorboard
    return config


async def train(session: TrainingSession, resume: bool) -> int:
    if resume:
        if not await session.load_checkpoint():
            logger.error("❌ No checkpoint to resume from")
            return 1
        logger.info("🔄 Resumed from latest checkpoint")

    session.start()
    try:
        await session.wait()
    except asyncio.CancelledError:
        await session.stop()
        raise
    return 0


def main():
    """Main training function"""
    parser = argparse.ArgumentParser(
        description="Train a self-play PPO agent",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Environment arguments
    parser.add_argument("--env", type=str, default="CartPole-v1",
                        help="Registered gymnasium environment id")
    parser.add_argument("--parallel-games", type=int, default=None,
                        help="Number of interleaved rollout collectors")

    # Training arguments
    parser.add_argument("--config", type=str, default=None, help="YAML session config")
    parser.add_argument("--max-games", type=int, default=None, help="Games to train for")
    parser.add_argument("--learning-rate", type=float, default=None, help="Learning rate")
    parser.add_argument("--rollout-length", type=int, default=None,
                        help="Decisions per rollout")

    # Reproducibility
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for reproducibility")

    # Logging arguments
    parser.add_argument("--log-dir", type=str, default="logs", help="Directory for logs")
    parser.add_argument("--checkpoint-dir", type=str, default="checkpoints",
                        help="Directory for checkpoints")
    parser.add_argument("--experiment-name", type=str, default=None,
                        help="Name for this experiment (auto-generated if not provided)")
    parser.add_argument("--tensorboard", action="store_true", help="Write TensorBoard logs")

    # Resume training
    parser.add_argument("--resume", action="store_true",
                        help="Resume from the latest checkpoint in the checkpoint directory")

    # Device
    parser.add_argument("--device", type=str, default="auto",
                        help="Device to use (cpu, cuda, or auto)")

    args = parser.parse_args()

    experiment_name = args.experiment_name or generate_experiment_name()
    log_dir = str(Path(args.log_dir) / experiment_name)
    checkpoint_dir = Path(args.checkpoint_dir)
    args.log_dir = log_dir
    args.experiment_name = experiment_name

    setup_logging(log_dir, experiment_name)
    logger.info("=" * 80)
    logger.info("🚀 Starting mimic_rl training")
    logger.info(f"📁 Experiment: {experiment_name}")
    logger.info("=" * 80)

    try:
        config = build_config(args)
        config.validate()
    except (TypeError, ValueError) as e:
        logger.error(f"❌ Invalid configuration: {e}")
        return 1

    logger.info("📋 Training Configuration:")
    logger.info(f"  🎮 Environment: {args.env}")
    logger.info(f"  🏃 Parallel games: {config.parallel_games}")
    logger.info(f"  📊 Max games: {config.max_games:,}")
    logger.info(f"  🧠 Learning rate: {config.ppo.learning_rate}")
    logger.info(f"  💻 Device: {config.ppo.device}")
    logger.info(f"  💾 Checkpoint directory: {checkpoint_dir}")

    try:
        session = TrainingSession(
            lambda: GymEnvironment(args.env, seed=config.seed),
            config,
            store=JsonFileStore(str(checkpoint_dir)),
        )
    except Exception as e:
        logger.error(f"❌ Failed to create training session: {e}")
        return 1

    start_time = time.time()
    logger.info(f"⏰ Training started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    try:
        exit_code = asyncio.run(train(session, args.resume))
    except KeyboardInterrupt:
        logger.info("⚠️ Training interrupted by user")
        exit_code = 0

    elapsed = timedelta(seconds=int(time.time() - start_time))
    stats = session.get_statistics()
    logger.info("=" * 80)
    logger.info(f"🏁 Finished in {elapsed}: {stats['games_completed']} games, "
                f"state {stats['state']}, win rate {stats['metrics']['win_rate']:.2%}")
    logger.info("=" * 80)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
