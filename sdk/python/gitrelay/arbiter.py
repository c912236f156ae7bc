"""
Local-precedence arbitration.

Freshly resolved remote state must never silently replace local work that
has not been published yet.
"""

from dataclasses import dataclass

from gitrelay.types.storage import StoredRepository


@dataclass(frozen=True)
class ArbiterDecision:
    """Outcome of comparing remote data against the local record."""

    write_to_cache: bool
    preserve_unpublished: bool
    reason: str


class LocalPrecedenceArbiter:
    """
    Decides whether remote data may overwrite the local repository record.

    Remote data is display-only when the local record has unpublished edits
    or already holds files for the requested branch.
    """

    def decide(self, local_record: StoredRepository | None, branch: str) -> ArbiterDecision:
        if local_record is None:
            return ArbiterDecision(True, False, "no local record")
        if local_record.has_unpublished_edits:
            return ArbiterDecision(False, True, "local record has unpublished edits")
        if local_record.files_for(branch):
            return ArbiterDecision(False, False, f"local record already has files for {branch}")
        return ArbiterDecision(True, False, "remote data accepted")
