"""Auto-escalation of unanswered location requests.

Public API::

    from src.services.escalation import (
        EscalationSweeper,
        EscalationScheduler,
        SweepResult,
    )
"""

from __future__ import annotations

from src.services.escalation.scheduler import EscalationScheduler
from src.services.escalation.sweeper import EscalationSweeper, SweepResult

__all__ = [
    "EscalationScheduler",
    "EscalationSweeper",
    "SweepResult",
]
