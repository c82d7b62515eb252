"""
Reactive branch source.

Holds the branches the current user can access (with their parent links) and
the subset currently active in the UI. Changes to the active set are pushed on
`active_changes` so the orchestrator can sync newly selected branches.
"""

from typing import Iterable, Optional

from pydantic import BaseModel

from events import EventChannel


class BranchInfo(BaseModel):
    branch_id: int
    branch_name: str
    parent_branch_id: Optional[int] = None


class BranchState:
    def __init__(self, branches: Iterable[BranchInfo] = (), active: Iterable[int] = ()):
        self._branches: dict[int, BranchInfo] = {b.branch_id: b for b in branches}
        self._active: list[int] = list(dict.fromkeys(active))
        self.active_changes: EventChannel[tuple[int, ...]] = EventChannel("active-branches")

    def active_branch_ids(self) -> list[int]:
        return list(self._active)

    def accessible_branches(self) -> list[BranchInfo]:
        return list(self._branches.values())

    def find(self, branch_id: int) -> Optional[BranchInfo]:
        return self._branches.get(branch_id)

    def branch_name(self, branch_id: int) -> str:
        branch = self._branches.get(branch_id)
        return branch.branch_name if branch else f"Branch {branch_id}"

    def set_accessible(self, branches: Iterable[BranchInfo]) -> None:
        self._branches = {b.branch_id: b for b in branches}

    def set_active(self, branch_ids: Iterable[int]) -> None:
        """Replace the active set, dropping duplicates. Subscribers see the new set."""
        self._active = list(dict.fromkeys(branch_ids))
        self.active_changes.publish(tuple(self._active))
