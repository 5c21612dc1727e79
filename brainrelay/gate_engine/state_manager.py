"""
Instrument State Manager

Keyed store of InstrumentState regions and their locks.

Ensures:
- One state region per instrument (or a single shared region in global scope)
- Every event for a region runs under that region's lock
- No cross-instrument locking
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from brainrelay.gate_engine.schemas import InstrumentState

GLOBAL_KEY = "*"


class InstrumentStateStore:
    """
    Manages state regions per instrument.

    In global scope every instrument maps to the same region, matching a
    single-symbol deployment.
    """

    def __init__(self, state_scope: str = "instrument"):
        self.state_scope = state_scope
        self._states: Dict[str, InstrumentState] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def key_for(self, instrument: str) -> str:
        """Region key for an instrument"""
        if self.state_scope == "global":
            return GLOBAL_KEY
        return instrument

    def get_state(self, instrument: str) -> InstrumentState:
        """
        Get state region for an instrument.

        Creates new state if it doesn't exist.
        """
        key = self.key_for(instrument)
        with self._guard:
            state = self._states.get(key)
            if state is None:
                state = InstrumentState(key=key)
                self._states[key] = state
                self._locks.setdefault(key, threading.RLock())
            return state

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def locked(self, instrument: str) -> Iterator[InstrumentState]:
        """Hold the region lock for one read-decide-mutate unit"""
        state = self.get_state(instrument)
        lock = self._lock_for(state.key)
        with lock:
            yield state

    def peek(self, instrument: str) -> Optional[InstrumentState]:
        """State region if it exists, without creating it"""
        with self._guard:
            return self._states.get(self.key_for(instrument))

    def keys(self) -> List[str]:
        with self._guard:
            return list(self._states.keys())

    def reset(self, instrument: str) -> bool:
        """Reset state for an instrument"""
        key = self.key_for(instrument)
        lock = self._lock_for(key)
        with lock:
            with self._guard:
                return self._states.pop(key, None) is not None

    def reset_all(self):
        """Reset all states"""
        with self._guard:
            self._states.clear()

    def get_state_summary(self, now_ms: int) -> dict:
        """Get summary of all states"""
        with self._guard:
            items = list(self._states.items())

        summary = {
            'state_scope': self.state_scope,
            'total_regions': len(items),
            'in_position': 0,
            'armed': 0,
            'crash_locked': 0,
            'states': {}
        }

        for key, state in items:
            lock = self._lock_for(key)
            with lock:
                if state.in_position:
                    summary['in_position'] += 1
                if state.activation_live:
                    summary['armed'] += 1
                if state.crash_lock.is_active(now_ms):
                    summary['crash_locked'] += 1
                summary['states'][key] = state.to_dict(now_ms)

        return summary
