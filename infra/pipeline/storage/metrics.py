import json
import threading
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime

class MetricsManager:
    """Per-stage timings of publishing runs, kept in one JSON file.

    Keys look like "<dictionary>/<stage>", e.g. "0001/encode_text".
    """

    def __init__(self, metrics_file: Path):
        self.metrics_file = Path(metrics_file)
        self._lock = threading.RLock()
        self._state = self._empty_state()

        self._load()

    @staticmethod
    def _empty_state() -> Dict[str, Any]:
        return {
            "version": "1.0",
            "created_at": datetime.now().isoformat(),
            "updated_at": datetime.now().isoformat(),
            "metrics": {}
        }

    def record(
        self,
        key: str,
        time_seconds: float = 0.0,
        pages: Optional[int] = None,
        custom_metrics: Optional[Dict[str, Any]] = None,
        accumulate: bool = False
    ) -> None:
        with self._lock:
            metrics_entry = self._state["metrics"].get(key, {}) if accumulate else {}

            if accumulate:
                metrics_entry["time_seconds"] = metrics_entry.get("time_seconds", 0.0) + time_seconds
                metrics_entry["runs"] = metrics_entry.get("runs", 0) + 1
                if pages is not None:
                    metrics_entry["pages"] = metrics_entry.get("pages", 0) + pages
            else:
                metrics_entry["time_seconds"] = time_seconds
                metrics_entry["runs"] = 1
                if pages is not None:
                    metrics_entry["pages"] = pages

            if custom_metrics:
                if accumulate:
                    for k, v in custom_metrics.items():
                        if k in metrics_entry and isinstance(v, (int, float)) and isinstance(metrics_entry[k], (int, float)):
                            metrics_entry[k] = metrics_entry[k] + v
                        else:
                            metrics_entry[k] = v
                else:
                    metrics_entry.update(custom_metrics)

            metrics_entry["updated_at"] = datetime.now().isoformat()

            self._state["metrics"][key] = metrics_entry
            self._state["updated_at"] = datetime.now().isoformat()
            self._save()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._state["metrics"].get(key)

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return dict(self._state["metrics"])

    def get_total_time(self) -> float:
        with self._lock:
            return sum(
                entry.get("time_seconds", 0.0)
                for entry in self._state["metrics"].values()
            )

    def get_metrics_by_prefix(self, prefix: str) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                key: entry
                for key, entry in self._state["metrics"].items()
                if key.startswith(prefix)
            }

    def get_stage_totals(self) -> Dict[str, Dict[str, float]]:
        """Sum time and pages over all dictionaries, per stage name."""
        with self._lock:
            totals: Dict[str, Dict[str, float]] = {}
            for key, entry in self._state["metrics"].items():
                stage = key.rsplit("/", 1)[-1]
                bucket = totals.setdefault(stage, {"time_seconds": 0.0, "pages": 0})
                bucket["time_seconds"] += entry.get("time_seconds", 0.0)
                bucket["pages"] += entry.get("pages", 0)
            return totals

    def reset(self) -> None:
        with self._lock:
            self._state = self._empty_state()
            self._save()

    def _load(self) -> None:
        if not self.metrics_file.exists():
            return

        try:
            with open(self.metrics_file, 'r') as f:
                loaded = json.load(f)

            if not isinstance(loaded, dict) or "metrics" not in loaded:
                return

            self._state = loaded

        except (json.JSONDecodeError, IOError):
            pass

    def _save(self) -> None:
        self.metrics_file.parent.mkdir(parents=True, exist_ok=True)

        temp_file = self.metrics_file.with_suffix('.tmp')
        try:
            with open(temp_file, 'w') as f:
                json.dump(self._state, f, indent=2)

            temp_file.replace(self.metrics_file)

        except Exception:
            if temp_file.exists():
                temp_file.unlink()
            raise
