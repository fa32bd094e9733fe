from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from variation_engine.core.metadata import (
    Defect,
    InspectionIteration,
    RefinementResult,
    Strategy,
    utc_now,
)

logger = logging.getLogger(__name__)


class SessionAuditLogger:
    """Appends refinement and inspection events to a JSONL file."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.events_path = self.root / "session_events.jsonl"

    def record_refinement(self, result: RefinementResult, strategy: Strategy | None, request: str = "") -> None:
        self._append(
            "refinement",
            {
                "request": request,
                "strategy": str(strategy) if strategy else None,
                "success": result.success,
                "attempts": result.attempts,
                "confidence": result.confidence,
                "unresolved_issues": [] if result.success else result.unresolved_issues(),
                "failure": type(result.failure).__name__ if result.failure else None,
            },
        )

    def record_iteration(self, iteration: InspectionIteration) -> None:
        self._append(
            "inspection_iteration",
            {
                "iteration": iteration.number,
                "status": str(iteration.status),
                "defects": [defect.to_dict() for defect in iteration.defects],
                "should_continue": iteration.should_continue,
                "pre_screened": iteration.pre_screened,
                "stop_reason": str(iteration.stop_reason) if iteration.stop_reason else None,
            },
        )

    def record_discarded(self, iteration: int, defect: Defect) -> None:
        self._append(
            "dangerous_suggestion_discarded",
            {
                "iteration": iteration,
                "defect": defect.to_dict(),
            },
        )

    def read_events(self, event: str | None = None) -> list[dict[str, Any]]:
        if not self.events_path.exists():
            return []
        events = []
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                payload = json.loads(line)
                if event is None or payload.get("event") == event:
                    events.append(payload)
        return events

    def _append(self, event: str, payload: dict[str, Any]) -> None:
        record = {"event": event, "timestamp": utc_now(), **payload}
        with self.events_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record) + "\n")
        logger.debug("Audit event %s written to %s", event, self.events_path)
