"""Cancellation signals for plan runs executing in this process"""

import threading
from typing import Dict, Optional


class MaintenanceState:
    """Thread-safe registry of running plans and their cancel events"""

    def __init__(self):
        self._lock = threading.Lock()
        self._runs: Dict[int, threading.Event] = {}

    def register(self, run_id: int) -> threading.Event:
        """Track a run and return the event its sequencer should watch"""
        with self._lock:
            event = self._runs.get(run_id)
            if event is None:
                event = threading.Event()
                self._runs[run_id] = event
            return event

    def release(self, run_id: int):
        with self._lock:
            self._runs.pop(run_id, None)

    def cancel(self, run_id: int) -> bool:
        """Signal a run to stop after its current step"""
        with self._lock:
            event: Optional[threading.Event] = self._runs.get(run_id)
        if event is None:
            return False
        event.set()
        return True

    def is_running(self, run_id: int) -> bool:
        with self._lock:
            return run_id in self._runs


#global instance
maintenance_state = MaintenanceState()
