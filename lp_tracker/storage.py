"""
Snapshot Storage — JSON history file
====================================

Daily runs append every position record to one JSON array, so the file
is the complete history the reports and P/L figures are computed from.
Hourly runs only overwrite a sibling ``*.latest.json`` file holding the
most recent snapshot, keeping the daily history one entry per day.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

Record = Dict[str, Any]


class PositionStore:
    """JSON-array store of position records."""

    def __init__(self, file_path: str, latest_path: Optional[str] = None):
        self.path = Path(file_path)
        if latest_path is None:
            latest_path = str(self.path.with_name(f"{self.path.stem}.latest{self.path.suffix}"))
        self.latest_path = Path(latest_path)

    @staticmethod
    def _read(path: Path) -> List[Record]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            print(f"⚠️  Could not read {path.name} ({type(e).__name__}) — starting empty")
            return []
        if not isinstance(data, list):
            print(f"⚠️  {path.name} is not a JSON array — starting empty")
            return []
        return data

    @staticmethod
    def _write(path: Path, records: List[Record]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(records, indent=2), encoding="utf-8")

    def load(self) -> List[Record]:
        """Full history, oldest first. A missing file is an empty history."""
        return self._read(self.path)

    def append(self, records: List[Record]) -> List[Record]:
        """Append ``records`` to the history and return the combined list."""
        combined = self.load() + list(records)
        self._write(self.path, combined)
        print(f"💾 Saved {len(records)} position(s) to {self.path}")
        return combined

    def load_latest(self) -> List[Record]:
        """Most recent hourly snapshot, or [] if none was taken."""
        return self._read(self.latest_path)

    def save_latest(self, records: List[Record]) -> None:
        """Overwrite the hourly snapshot file."""
        self._write(self.latest_path, list(records))
        print(f"💾 Saved hourly snapshot to {self.latest_path}")
