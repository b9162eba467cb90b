"""Per-model throttle state with best-effort persistence of tuned delays."""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, Mapping, Optional, Protocol, Union

from bulletin_ai.utils.real_time_logger import get_logger

LOGGER = get_logger()

MIN_DELAY_MS = 500
MAX_BACKOFF_MULTIPLIER = 5
STORAGE_KEY = "bulletinAI_adaptiveRateLimits"


@dataclass
class ThrottleState:
    base_delay_ms: int
    current_delay_ms: int
    last_request_at: Optional[float] = None
    success_streak: int = 0

    @property
    def max_delay_ms(self) -> int:
        return self.base_delay_ms * MAX_BACKOFF_MULTIPLIER

    @property
    def is_adapted(self) -> bool:
        return self.current_delay_ms != self.base_delay_ms


class DelayPersistence(Protocol):
    """Narrow load/save capability; both calls may raise."""

    def load(self) -> Mapping[str, int]:
        ...

    def save(self, delays: Mapping[str, int]) -> None:
        ...


class MemoryDelayPersistence:
    def __init__(self, initial: Optional[Mapping[str, int]] = None) -> None:
        self.data: Dict[str, int] = dict(initial or {})
        self.saves = 0

    def load(self) -> Mapping[str, int]:
        return dict(self.data)

    def save(self, delays: Mapping[str, int]) -> None:
        self.data = dict(delays)
        self.saves += 1


class JsonFileDelayPersistence:
    """Stores the delay mapping under one namespaced key of a JSON key-value file.

    Other keys in the file are preserved so the file can be shared with other
    settings.
    """

    def __init__(self, path: Union[str, Path], key: str = STORAGE_KEY) -> None:
        self.path = Path(path).expanduser()
        self.key = key

    def _read_document(self) -> Dict[str, object]:
        if not self.path.is_file():
            return {}
        with self.path.open("r", encoding="utf-8") as handle:
            document = json.load(handle)
        if not isinstance(document, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return document

    def load(self) -> Mapping[str, int]:
        raw = self._read_document().get(self.key)
        if raw is None:
            return {}
        # Older writers stored the mapping as a JSON string.
        if isinstance(raw, str):
            raw = json.loads(raw)
        if not isinstance(raw, dict):
            raise ValueError(f"entry {self.key!r} is not a mapping")
        return raw

    def save(self, delays: Mapping[str, int]) -> None:
        try:
            document = self._read_document()
        except ValueError:
            document = {}
        document[self.key] = dict(delays)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)


class DelayStore:
    """Owns every ThrottleState.

    Only the rate governor holds a reference to the store; all other
    components read derived values through the governor.
    """

    def __init__(
        self,
        base_delay_for: Callable[[str], int],
        persistence: Optional[DelayPersistence] = None,
    ) -> None:
        self._base_delay_for = base_delay_for
        self._persistence = persistence
        self._states: Dict[str, ThrottleState] = {}
        self._persisted: Dict[str, int] = {}

    # --- persistence ------------------------------------------------------------
    def load(self) -> int:
        """Read persisted delays once; unreadable data counts as empty."""

        if self._persistence is None:
            return 0
        try:
            raw = self._persistence.load()
        except Exception as exc:
            LOGGER.warning("[delays] could not load adaptive delays, starting empty: %s", exc)
            return 0

        loaded: Dict[str, int] = {}
        for model_id, value in raw.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                LOGGER.debug("[delays] skipping malformed entry %r=%r", model_id, value)
                continue
            loaded[str(model_id)] = int(value)
        self._persisted = loaded
        for model_id, delay in loaded.items():
            state = self._states.get(model_id)
            if state is not None:
                state.current_delay_ms = self._clamp(state, delay)
        LOGGER.info("[delays] loaded %d adaptive delay(s)", len(loaded))
        return len(loaded)

    def save(self) -> None:
        if self._persistence is None:
            return
        try:
            self._persistence.save(self.to_mapping())
        except Exception as exc:
            LOGGER.warning("[delays] could not save adaptive delays: %s", exc)

    def to_mapping(self) -> Dict[str, int]:
        mapping = dict(self._persisted)
        mapping.update({model_id: state.current_delay_ms for model_id, state in self._states.items()})
        return mapping

    # --- state access -----------------------------------------------------------
    def base_delay(self, model_id: str) -> int:
        return max(MIN_DELAY_MS, int(self._base_delay_for(model_id)))

    def get(self, model_id: str) -> ThrottleState:
        state = self._states.get(model_id)
        if state is None:
            base = self.base_delay(model_id)
            state = ThrottleState(base_delay_ms=base, current_delay_ms=base)
            if model_id in self._persisted:
                state.current_delay_ms = self._clamp(state, self._persisted[model_id])
            self._states[model_id] = state
        return state

    def peek(self, model_id: str) -> Optional[ThrottleState]:
        return self._states.get(model_id)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._states))

    def set_delay(self, model_id: str, delay_ms: int) -> int:
        state = self.get(model_id)
        state.current_delay_ms = self._clamp(state, delay_ms)
        return state.current_delay_ms

    def clear(self, model_id: Optional[str] = None) -> None:
        """Drop tuned delays back to base."""

        targets = [model_id] if model_id is not None else list(self._states)
        for target in targets:
            state = self._states.get(target)
            if state is not None:
                state.current_delay_ms = state.base_delay_ms
                state.success_streak = 0
            self._persisted.pop(target, None)
        if model_id is None:
            self._persisted.clear()

    @staticmethod
    def _clamp(state: ThrottleState, delay_ms: int) -> int:
        return max(MIN_DELAY_MS, min(state.max_delay_ms, int(delay_ms)))


__all__ = [
    "MIN_DELAY_MS",
    "MAX_BACKOFF_MULTIPLIER",
    "STORAGE_KEY",
    "ThrottleState",
    "DelayPersistence",
    "MemoryDelayPersistence",
    "JsonFileDelayPersistence",
    "DelayStore",
]
