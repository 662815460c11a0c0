"""arq worker settings module.

Import path for arq CLI: arq thunt.workers.settings.WorkerSettings
"""

from __future__ import annotations

from thunt.workers.reward_worker import WorkerSettings

__all__ = ["WorkerSettings"]
