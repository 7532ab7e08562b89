### leasesign/worker/run_task.py

"""
Task Runner Script

Manually trigger a periodic task, e.g. after an outage.
"""

# Standard library imports
import sys

# Local imports
from leasesign.core.celery_app import app
from leasesign.worker.config import beat_schedule


def run_task():
    """Run a task manually."""
    if len(sys.argv) < 2:
        print("Usage: python -m leasesign.worker.run_task <task_name> [args...]")
        print("\nAvailable tasks:")
        for entry in beat_schedule.values():
            print(f"- {entry['task']}")
        sys.exit(1)

    task_name = sys.argv[1]
    task_args = sys.argv[2:]

    result = app.send_task(task_name, args=task_args)
    print(f"Task sent: {task_name}")
    print(f"Task ID: {result.id}")


if __name__ == "__main__":
    run_task()
