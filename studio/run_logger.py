"""Studio event log and per-shot job manifest."""
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class EventLog:
    def __init__(self, log_dir: str, echo: bool = False) -> None:
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)
        self.log_path = os.path.join(self.log_dir, "studio.log")
        self.manifest_path = os.path.join(self.log_dir, "jobs.json")
        self.echo = echo
        self.manifest: Dict[str, Any] = {}
        if os.path.exists(self.manifest_path):
            try:
                with open(self.manifest_path, "r", encoding="utf-8") as f:
                    self.manifest = json.load(f)
            except (OSError, ValueError):
                self.manifest = {}
        self.manifest.setdefault("started_at", _now())
        self.manifest.setdefault("shots", {})

    def log(self, message: str) -> None:
        line = f"[{_now()}] {message}"
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
        if self.echo:
            print(line)

    def warn(self, message: str) -> None:
        self.log(f"WARNING {message}")

    def record_step(self, local_id: str, step: str, payload: Dict[str, Any]) -> None:
        entry = dict(payload)
        entry["at"] = _now()
        steps: List[Dict[str, Any]] = self.manifest["shots"].setdefault(local_id, {}).setdefault(step, [])
        steps.append(entry)
        self._flush()

    def forget(self, local_id: str) -> None:
        """Drop a shot's step history once it leaves the draft list."""
        if self.manifest["shots"].pop(local_id, None) is not None:
            self._flush()

    def steps_for(self, local_id: str, step: Optional[str] = None) -> Any:
        shot = self.manifest["shots"].get(local_id, {})
        if step is None:
            return shot
        return shot.get(step, [])

    def _flush(self) -> None:
        self.manifest["updated_at"] = _now()
        with open(self.manifest_path, "w", encoding="utf-8") as f:
            json.dump(self.manifest, f, ensure_ascii=True, indent=2)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
