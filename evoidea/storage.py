"""File-backed run storage: config, state snapshots, event history, final result, preferences."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from evoidea.config import RunConfig
from evoidea.models import Event, FinalResult, PopulationState, Preferences


class StorageError(RuntimeError):
    """A run artifact could not be read or written."""

    def __init__(self, message: str, path: Path) -> None:
        super().__init__(f"{message}: {path}")
        self.path = path


class RunStorage:
    """One directory per run under `base_dir`."""

    CONFIG_FILE = "config.json"
    STATE_FILE = "state.json"
    HISTORY_FILE = "history.ndjson"
    FINAL_FILE = "final.json"
    PREFERENCES_FILE = "preferences.json"
    EXPORTS_DIR = "exports"

    def __init__(self, base_dir: str = "runs") -> None:
        self.dir = Path(base_dir)

    def run_dir(self, run_id: str) -> Path:
        return self.dir / run_id

    def path(self, run_id: str, name: str) -> Path:
        return self.run_dir(run_id) / name

    def has_run(self, run_id: str) -> bool:
        return self.path(run_id, self.CONFIG_FILE).is_file()

    def list_run_ids(self) -> list[str]:
        if not self.dir.is_dir():
            return []
        return sorted(child.name for child in self.dir.iterdir() if child.is_dir())

    def init_run(self, config: RunConfig) -> PopulationState:
        """Create the run directory with its config, an empty state, and an empty history."""

        run_dir = self.run_dir(config.run_id)
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError("Failed to create run directory", run_dir) from exc

        self.save_config(config)
        state = PopulationState(run_id=config.run_id)
        self.save_state(state)
        history_path = self.path(config.run_id, self.HISTORY_FILE)
        try:
            history_path.touch()
        except OSError as exc:
            raise StorageError("Failed to create history", history_path) from exc
        return state

    def save_config(self, config: RunConfig) -> None:
        self._write_json(self.path(config.run_id, self.CONFIG_FILE), config.to_dict(), "config")

    def load_config(self, run_id: str) -> RunConfig:
        path = self.path(run_id, self.CONFIG_FILE)
        payload = self._read_json(path, "config")
        try:
            return RunConfig.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError("Invalid config", path) from exc

    def save_state(self, state: PopulationState) -> None:
        self._write_json(self.path(state.run_id, self.STATE_FILE), state.to_dict(), "state")

    def load_state(self, run_id: str) -> PopulationState:
        path = self.path(run_id, self.STATE_FILE)
        payload = self._read_json(path, "state")
        try:
            return PopulationState.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError("Invalid state", path) from exc

    def append_event(self, run_id: str, event: Event) -> None:
        path = self.path(run_id, self.HISTORY_FILE)
        try:
            with path.open("a", encoding="utf-8") as file_obj:
                file_obj.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")
        except OSError as exc:
            raise StorageError("Failed to append history", path) from exc

    def read_events(self, run_id: str) -> list[Event]:
        path = self.path(run_id, self.HISTORY_FILE)
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise StorageError("Failed to read history", path) from exc

        events: list[Event] = []
        for line_no, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                events.append(Event.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError) as exc:
                raise StorageError(f"Invalid history line {line_no}", path) from exc
        return events

    def save_final(self, result: FinalResult) -> None:
        self._write_json(self.path(result.run_id, self.FINAL_FILE), result.to_dict(), "final result")

    def has_final(self, run_id: str) -> bool:
        return self.path(run_id, self.FINAL_FILE).is_file()

    def load_final(self, run_id: str) -> FinalResult:
        path = self.path(run_id, self.FINAL_FILE)
        payload = self._read_json(path, "final result")
        try:
            return FinalResult.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError("Invalid final result", path) from exc

    def load_preferences(self, run_id: str) -> Preferences:
        """Stored preferences, or an empty set when the run has no tournament yet."""

        path = self.path(run_id, self.PREFERENCES_FILE)
        if not path.exists():
            return Preferences()
        payload = self._read_json(path, "preferences")
        try:
            return Preferences.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError("Invalid preferences", path) from exc

    def save_preferences(self, run_id: str, preferences: Preferences) -> None:
        self._write_json(self.path(run_id, self.PREFERENCES_FILE), preferences.to_dict(), "preferences")

    def write_export(self, run_id: str, filename: str, content: str) -> Path:
        path = self.run_dir(run_id) / self.EXPORTS_DIR / filename
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise StorageError("Failed to write export", path) from exc
        return path

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any], label: str) -> None:
        try:
            path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to write {label}", path) from exc

    @staticmethod
    def _read_json(path: Path, label: str) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StorageError(f"Failed to read {label}", path) from exc
        except json.JSONDecodeError as exc:
            raise StorageError(f"Invalid JSON in {label}", path) from exc
