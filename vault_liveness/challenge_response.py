import random
from typing import Optional, Tuple

from vault_types import HandTask, HeadTask


class TaskRandomizer:
    """
    Picks the head-pose and hand-gesture challenges for a session.
    Selection is uniform over fixed catalogs, independent per draw and
    with replacement, so consecutive sessions may repeat a task.
    """
    HEAD_TASKS = tuple(HeadTask)
    HAND_TASKS = tuple(HandTask)

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def next_head_task(self) -> HeadTask:
        """Issue a new random head-pose challenge."""
        return self._rng.choice(self.HEAD_TASKS)

    def next_hand_task(self) -> HandTask:
        """Issue a new random hand-gesture challenge."""
        return self._rng.choice(self.HAND_TASKS)

    def next_pair(self) -> Tuple[HeadTask, HandTask]:
        return self.next_head_task(), self.next_hand_task()
