"""
Predictive preloading of branches the user is likely to open next.

Predictions come from the branch hierarchy: children of every active branch,
plus up to two siblings per active branch. Only the light data types are
warmed, at low priority, so a wrong guess costs little.
"""

import logging
from collections.abc import Iterable, Sequence

from batcher import RequestBatcher
from branches import BranchInfo, BranchState
from models import PRELOAD_TYPES, BatchLoadRequest, Priority

logger = logging.getLogger("branch-sync.preloader")

MAX_SIBLINGS = 2


def predict_next_branches(active_ids: Iterable[int], branches: Sequence[BranchInfo]) -> list[int]:
    """Children of each active branch plus up to two siblings, excluding active ones."""
    active = list(active_ids)
    by_id = {b.branch_id: b for b in branches}
    predicted: dict[int, None] = {}

    for branch_id in active:
        branch = by_id.get(branch_id)
        if branch is None:
            continue

        for child in branches:
            if child.parent_branch_id == branch_id:
                predicted[child.branch_id] = None

        if branch.parent_branch_id is not None:
            siblings = [
                b for b in branches
                if b.parent_branch_id == branch.parent_branch_id and b.branch_id != branch_id
            ]
            for sibling in siblings[:MAX_SIBLINGS]:
                predicted[sibling.branch_id] = None

    return [b for b in predicted if b not in active]


class PredictivePreloader:
    def __init__(self, branch_state: BranchState, batcher: RequestBatcher):
        self.branch_state = branch_state
        self.batcher = batcher
        self.preload_count = 0

    def predict(self) -> list[int]:
        return predict_next_branches(
            self.branch_state.active_branch_ids(), self.branch_state.accessible_branches()
        )

    def preload(self) -> list[int]:
        """
        Queue a low priority warm-up per predicted branch. One request per
        branch keeps the warmed cache keys identical to single-branch loads.
        """
        predicted = self.predict()
        if not predicted:
            return []

        logger.info("Predictive preloading for branches: %s", predicted)
        for branch_id in predicted:
            self.batcher.enqueue(
                BatchLoadRequest(
                    branch_ids=[branch_id],
                    data_types=list(PRELOAD_TYPES),
                    priority=Priority.LOW,
                    force_refresh=False,
                )
            )
        self.preload_count += len(predicted)
        return predicted
