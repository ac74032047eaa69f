#!/usr/bin/env python3
"""
Up-to-date checks for derived artifacts.

An artifact set is stale when it has to be regenerated: an output is missing,
an input is newer than the outputs, an input is missing (recompute rather
than silently skip), or the run forces overwrites.
"""
import os
import logging
from typing import Iterable, List, Optional, Tuple

from genepipe.exceptions import PipelineError

logger = logging.getLogger("genepipe.core.freshness")


def _stale_reason(inputs: List[str], outputs: List[str], force: bool) -> Optional[str]:
    if force:
        return "force overwrite"

    for path in inputs:
        if not os.path.exists(path):
            return f"input missing: {path}"

    if not outputs:
        return "no outputs declared"

    output_mtimes = []
    for path in outputs:
        if not os.path.exists(path):
            return f"output missing: {path}"
        output_mtimes.append(os.path.getmtime(path))

    oldest_output = min(output_mtimes)
    for path in inputs:
        if os.path.getmtime(path) > oldest_output:
            return f"input newer than outputs: {path}"

    return None


def is_stale(inputs: Iterable[str], outputs: Iterable[str], force: bool = False) -> bool:
    """Decide whether outputs must be regenerated from inputs

    Args:
        inputs: Paths the outputs are derived from
        outputs: Paths of the derived artifacts
        force: Always report stale

    Returns:
        True if regeneration is required
    """
    return _stale_reason([str(p) for p in inputs], [str(p) for p in outputs], force) is not None


class FreshnessTracker:
    """Run-wide freshness checks with logging of the deciding reason"""

    def __init__(self, force: bool = False):
        self.force = force
        self.logger = logging.getLogger("genepipe.core.freshness")

    def check(self, inputs: Iterable[str], outputs: Iterable[str],
              label: str = "") -> Tuple[bool, Optional[str]]:
        """Return (stale, reason)"""
        reason = _stale_reason([str(p) for p in inputs], [str(p) for p in outputs], self.force)
        if reason:
            self.logger.debug(f"{label or 'artifact'} is stale: {reason}")
        else:
            self.logger.debug(f"{label or 'artifact'} is up to date")
        return reason is not None, reason

    def is_stale(self, inputs: Iterable[str], outputs: Iterable[str], label: str = "") -> bool:
        stale, _ = self.check(inputs, outputs, label)
        return stale

    @staticmethod
    def require_inputs(paths: Iterable[str], stage: str) -> None:
        """Fail the run when a predecessor stage's artifact is missing

        Raises:
            PipelineError: naming the stage and the missing paths
        """
        missing = [str(p) for p in paths if not os.path.exists(p)]
        if missing:
            raise PipelineError(
                f"Stage {stage} cannot run, required input missing: {', '.join(missing)}",
                {"stage": stage, "missing": missing}
            )
