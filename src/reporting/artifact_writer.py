"""
Artifact Writer for Vault Runs

Writes the per-step history and run metadata of a vault simulation.

Key Principles:
- Deterministic: sorted columns, rows sorted by the key columns
- Append mode: one row per step, re-runs replace rows with the same key
- Once mode: parameters and summaries are written once per run
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_KEY_COLUMNS = ["step"]


class ArtifactWriter:
    """
    Writes CSV/JSON artifacts under one run directory
    (e.g. reports/runs/{run_id}/).
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        # Files already written in "once" mode
        self._once_written = set()

        logger.info(f"[ArtifactWriter] Initialized with base_dir: {self.base_dir}")

    def write_csv(
        self,
        relative_path: str,
        df: pd.DataFrame,
        mode: str = "append",
        key_columns: Optional[List[str]] = None,
    ) -> Path:
        """
        Write DataFrame to CSV.

        Args:
            relative_path: Path relative to base_dir (e.g. "history.csv")
            df: Rows to write
            mode: "append" (merge with existing rows) or "overwrite"
            key_columns: Columns identifying a row; defaults to ["step"] when present

        Returns:
            Full path of the written file
        """
        if mode not in ("append", "overwrite"):
            raise ValueError(f"mode must be 'append' or 'overwrite', got {mode}")

        file_path = self.get_path(relative_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        df_to_write = df.reset_index(drop=True) if df.index.name is None else df.reset_index()
        df_to_write = df_to_write.reindex(sorted(df_to_write.columns), axis=1)

        if key_columns is None:
            key_columns = [c for c in DEFAULT_KEY_COLUMNS if c in df_to_write.columns] or None

        if mode == "append" and file_path.exists():
            existing = pd.read_csv(file_path)
            df_to_write = pd.concat([existing, df_to_write], ignore_index=True)
            if key_columns:
                df_to_write = df_to_write.drop_duplicates(subset=key_columns, keep="last")

        if key_columns:
            df_to_write = df_to_write.sort_values(key_columns)

        df_to_write.to_csv(file_path, index=False, float_format="%.8f")
        logger.debug(f"[ArtifactWriter] Wrote {relative_path}: {len(df_to_write)} rows (key={key_columns})")
        return file_path

    def write_json(self, relative_path: str, obj: Dict[str, Any], mode: str = "once") -> Optional[Path]:
        """
        Write a dictionary to JSON.

        Args:
            relative_path: Path relative to base_dir (e.g. "params.json")
            obj: Dictionary to write; numpy scalars are converted
            mode: "once" (skip if already written) or "overwrite"
        """
        file_path = self.get_path(relative_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        if mode == "once":
            if file_path.exists() or relative_path in self._once_written:
                logger.debug(f"[ArtifactWriter] Skipping {relative_path} (already written)")
                return None
            self._once_written.add(relative_path)

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=2, sort_keys=True, ensure_ascii=False, default=_json_default)

        logger.debug(f"[ArtifactWriter] Wrote {relative_path}")
        return file_path

    def get_path(self, relative_path: str) -> Path:
        return self.base_dir / relative_path


def _json_default(value: Any) -> Any:
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def create_artifact_writer(run_dir: Optional[Path] = None) -> Optional[ArtifactWriter]:
    """
    Factory function to create ArtifactWriter.

    Returns None (no artifacts) when run_dir is None.
    """
    if run_dir is None:
        return None

    return ArtifactWriter(Path(run_dir))
