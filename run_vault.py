"""
Main entry point for running a leveraged loop vault simulation.

This script orchestrates:
1. Config - load configs/vault.yaml (vault, strategy, venues, simulation)
2. Vault - wire the vault to simulated venues (one or two credit venues)
3. Scenario - drive deposits, withdrawals, price drift and rebalances
4. Artifacts - write history.csv, params.json and summary.json under reports/runs/{run_id}/
"""

import sys
import argparse
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
import logging

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from src.config.vault_config import DEFAULT_CONFIG_PATH, STRATEGY_PROFILES, load_config
from src.reporting import create_artifact_writer
from src.simulation import build_simulated_vault, run_scenario, summarize_scenario

RUNS_DIR = Path("reports/runs")


def main():
    """Run a vault scenario and write its artifacts."""

    parser = argparse.ArgumentParser(description="Run leveraged loop vault simulation")
    parser.add_argument(
        "--config",
        type=str,
        default=str(DEFAULT_CONFIG_PATH),
        help=f"Path to vault config YAML. Default: {DEFAULT_CONFIG_PATH}"
    )
    parser.add_argument(
        "--profile",
        type=str,
        default=None,
        choices=sorted(STRATEGY_PROFILES),
        help="Strategy profile. If not specified, uses strategy.profile from config."
    )
    parser.add_argument("--steps", type=int, default=None, help="Number of simulated days")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument(
        "--multi_venue",
        action="store_true",
        help="Use the two-venue layout (venue_b from config)"
    )
    parser.add_argument(
        "--run_id",
        type=str,
        default=None,
        help="Run identifier for saving artifacts. If not specified, generates timestamp-based ID."
    )

    args = parser.parse_args()
    run_id = args.run_id or datetime.now().strftime("%Y%m%d_%H%M%S")

    logger.info("=" * 80)
    logger.info("LEVERAGED LOOP VAULT: Scenario Simulation")
    logger.info("=" * 80)
    logger.info(f"Config: {args.config}")
    logger.info(f"Run ID: {run_id}")

    try:
        config = load_config(args.config)
        env = build_simulated_vault(
            config,
            multi_venue=True if args.multi_venue else None,
            profile=args.profile,
        )

        history = run_scenario(env, steps=args.steps, seed=args.seed)
        summary = summarize_scenario(history)

        writer = create_artifact_writer(RUNS_DIR / run_id)
        writer.write_csv("history.csv", history, mode="overwrite")
        writer.write_json("params.json", {
            "config_path": args.config,
            "profile": args.profile,
            "multi_venue": len(env.venues) > 1,
            "strategy": asdict(env.vault.strategy_params),
            "simulation": env.simulation,
        })
        writer.write_json("summary.json", summary, mode="overwrite")

        logger.info("\n" + "=" * 80)
        logger.info("SCENARIO RESULTS")
        logger.info("=" * 80)
        for metric, value in summary.items():
            if isinstance(value, float):
                if "return" in metric:
                    logger.info(f"  {metric:20}: {value:8.4%}")
                elif "leverage" in metric:
                    logger.info(f"  {metric:20}: {value:8.2f}x")
                else:
                    logger.info(f"  {metric:20}: {value:12.6f}")
            else:
                logger.info(f"  {metric:20}: {value}")
        logger.info(f"\nArtifacts written to {writer.base_dir}")

        return summary

    except Exception as e:
        logger.error(f"\nError during simulation: {e}")
        import traceback
        traceback.print_exc()
        return None


if __name__ == "__main__":
    results = main()
    sys.exit(0 if results is not None else 1)
