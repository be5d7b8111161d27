"""Best-effort artifact cleanup.

Responsibilities:
- Delete artifacts that are no longer referenced, logging failures as warnings.
- Report outcomes through `CleanupReport` so cleanup never raises into the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..errors import PagevoiceError
from ..io.storage import ArtifactStore
from ..models.datatypes import ArtifactRef
from ..telemetry.logger import RunLogger


@dataclass(slots=True)
class CleanupReport:
    """Outcome of one best-effort cleanup pass."""

    deleted: list[ArtifactRef] = field(default_factory=list)
    missing: list[ArtifactRef] = field(default_factory=list)
    failed: list[ArtifactRef] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return whether every requested artifact is gone."""

        return not self.failed

    def merge(self, other: CleanupReport) -> CleanupReport:
        """Fold another report into this one and return `self`."""

        self.deleted.extend(other.deleted)
        self.missing.extend(other.missing)
        self.failed.extend(other.failed)
        return self


def delete_artifacts(
    store: ArtifactStore,
    refs: Iterable[ArtifactRef],
    *,
    run_logger: RunLogger | None = None,
) -> CleanupReport:
    """Delete each reference once, recording failures instead of raising."""

    report = CleanupReport()
    seen: set[ArtifactRef] = set()
    for ref in refs:
        if ref in seen:
            continue
        seen.add(ref)
        try:
            removed = store.delete(ref)
        except (PagevoiceError, OSError) as exc:
            report.failed.append(ref)
            if run_logger is not None:
                run_logger.log_cleanup_failure(ref.as_string(), type(exc).__name__)
            continue
        if removed:
            report.deleted.append(ref)
        else:
            report.missing.append(ref)
    return report
