from .data_retention import (
    cleanup_finished_runs,
    run_all_cleanup_tasks,
)
from .plan_runner import recover_interrupted_runs, run_plan_job

__all__ = [
    'cleanup_finished_runs',
    'run_all_cleanup_tasks',
    'recover_interrupted_runs',
    'run_plan_job',
]
