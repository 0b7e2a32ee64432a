"""Task manager — periodic maintenance jobs for the coordination layer.

Provides ``TaskManager`` for recurring housekeeping such as purging old
completed jobs from every queue.

Uses ``asyncio`` tasks for scheduling. For multi-instance deployments a
store ``SET NX`` lock makes sure only one instance runs a given job per
period.
"""

from __future__ import annotations

from marketplace_coord.taskmanager.manager import CronJob, TaskManager

__all__ = ["CronJob", "TaskManager"]
