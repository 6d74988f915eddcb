"""Release gate: decides whether the collected artifact set may be published."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from wheelhouse_core.models import CellResult, GateDecision, ReleaseEvent

logger = structlog.get_logger(__name__)


class ReleaseGate:
    """All-or-nothing publish decision.

    The gate opens only for a tag push in which every matrix cell succeeded.
    A closed gate is a recorded skip, not an error.

    Example:
        >>> gate = ReleaseGate()
        >>> gate.evaluate(ReleaseEvent.from_ref("refs/heads/main"), results).open
        False
    """

    def evaluate(self, event: ReleaseEvent, results: Iterable[CellResult]) -> GateDecision:
        """Evaluate the gate for a run."""
        results = list(results)
        failed = [r.job.cell_id for r in results if r.failed]

        if not event.is_tag:
            decision = GateDecision(
                open=False,
                reason=f"not a tag ({event.trigger_ref or 'no ref'})",
                failed_cells=failed,
            )
        elif not results:
            decision = GateDecision(open=False, reason="no matrix cells ran")
        elif failed:
            decision = GateDecision(
                open=False,
                reason=f"{len(failed)} cell(s) failed",
                failed_cells=failed,
            )
        else:
            decision = GateDecision(open=True, reason=f"tag {event.tag_name} fully verified")

        if decision.open:
            logger.info("release_gate_open", tag=event.tag_name, cells=len(results))
        else:
            logger.info(
                "release_gate_closed",
                reason=decision.reason,
                failed_cells=decision.failed_cells,
            )
        return decision
