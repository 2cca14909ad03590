"""
Best-effort compensation for multi-step catalog mutations.

Each applied step records how to undo itself. On failure the log is
replayed newest-first. Undo failures are collected as RollbackError and
logged; they never propagate, so the error that triggered the rollback is
the one the caller sees. This is saga-style compensation, not a
transaction: another writer can change the same items in between.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from exceptions import RollbackError

logger = structlog.get_logger(__name__)

APPLYING = "applying"
ROLLING_BACK = "rolling_back"
FAILED = "failed"
DONE = "done"


@dataclass
class CompensationEntry:
    action: str
    prior_state: dict[str, Any]
    undo: Callable[[], Any]


@dataclass
class CompensationLog:
    scope: str
    entries: list[CompensationEntry] = field(default_factory=list)
    rollback_errors: list[RollbackError] = field(default_factory=list)
    state: str = APPLYING

    def record(self, action: str, prior_state: dict[str, Any], undo: Callable[[], Any]) -> None:
        if self.state != APPLYING:
            raise RuntimeError(f"Cannot record into a {self.state} compensation log")
        self.entries.append(CompensationEntry(action, prior_state, undo))

    def complete(self) -> None:
        self.state = DONE

    def replay(self, cause: Optional[BaseException] = None) -> list[RollbackError]:
        """Undo recorded steps in reverse order; returns the undo failures."""
        self.state = ROLLING_BACK
        logger.warning(
            "compensation_started",
            scope=self.scope,
            steps=len(self.entries),
            cause=str(cause) if cause else None
        )

        for entry in reversed(self.entries):
            try:
                entry.undo()
            except Exception as e:
                error = RollbackError(entry.action, str(e), details={"prior_state": entry.prior_state})
                self.rollback_errors.append(error)
                logger.error(
                    "compensation_step_failed",
                    scope=self.scope,
                    action=entry.action,
                    error=str(e)
                )

        self.state = FAILED
        logger.info(
            "compensation_finished",
            scope=self.scope,
            steps=len(self.entries),
            failures=len(self.rollback_errors)
        )
        return self.rollback_errors
