"""error taxonomy for control-plane calls and plan execution"""

from typing import Optional


class ControlPlaneError(Exception):
    """an administrative command failed or could not be run"""

    def __init__(self, message: str, command: Optional[str] = None):
        super().__init__(message)
        self.command = command


class NotFoundError(ControlPlaneError):
    """the control plane does not know the requested object"""


class MaintenanceError(Exception):
    """base class for everything the sequencer surfaces in an outcome"""

    kind = "MaintenanceError"

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class ResolutionError(MaintenanceError):
    kind = "ResolutionError"


class RequiredStepError(MaintenanceError):
    kind = "RequiredStepError"


class BestEffortStepError(MaintenanceError):
    kind = "BestEffortStepError"


class PredicateTimeout(MaintenanceError):
    kind = "PredicateTimeout"


class PlanCancelled(MaintenanceError):
    kind = "PlanCancelled"


class StepSkipped(Exception):
    """raised by a step action that has nothing to do; the message is reported"""
