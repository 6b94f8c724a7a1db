"""
Centralized JSON persistence utilities.

Provides consistent error handling, logging and atomic writes for the
file-backed key-value store.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class JSONRepository:
    """Centralized JSON persistence with consistent error handling and atomic operations."""

    @staticmethod
    def load_json(path: Path, default: Optional[Any] = None) -> Any:
        """
        Load a JSON document from file with consistent error handling.

        Args:
            path: Path to JSON file
            default: Value to return if the file doesn't exist or fails to load

        Returns:
            Decoded JSON value or default
        """
        if not path.exists():
            logger.debug(f"JSON file does not exist: {path}")
            return default

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON file {path}: {e}")
            return default

        if data is None:
            logger.warning(f"JSON file is empty: {path}")
            return default

        logger.debug(f"Successfully loaded JSON from {path}")
        return data

    @staticmethod
    def save_json(path: Path, data: Any, *, atomic: bool = True) -> None:
        """
        Save a JSON document, writing to a temp file and renaming when atomic.

        Raises:
            OSError: If the file cannot be written
            TypeError: If the data is not JSON serializable
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        if atomic:
            temp_file = path.with_suffix(path.suffix + ".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_file.replace(path)
        else:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)

        logger.debug(f"Successfully saved JSON to {path}")

    @staticmethod
    def append_json_line(path: Path, record: Dict[str, Any]) -> None:
        """Append one record to a JSON-lines file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    @staticmethod
    def load_json_lines(path: Path) -> List[Dict[str, Any]]:
        """Load every well-formed record of a JSON-lines file, skipping corrupt lines."""
        if not path.exists():
            return []

        records: List[Dict[str, Any]] = []
        with open(path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping corrupt line {line_no} in {path}: {e}")
        return records
