# crash_round_backend/app/outcome_queue.py

from collections import deque
from typing import Deque, Iterable, List

from app.game_logic import Outcome, parse_multipliers


class OutcomeQueue:
    """
    Lookahead buffer of crash values that have not been played yet.

    The front is the next round's outcome. After every consume, peek or inject
    the queue is topped up from the generator to at least `min_depth` entries.
    Callers outside the scheduler must hold the scheduler's lock.
    """

    def __init__(self, generator, min_depth: int = 10):
        if min_depth < 1:
            raise ValueError("min_depth must be at least 1")
        self.generator = generator
        self.min_depth = min_depth
        self._items: Deque[Outcome] = deque()
        self.refill()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def algorithm_key(self) -> str:
        return self.generator.algorithm_key

    def refill(self) -> None:
        while len(self._items) < self.min_depth:
            self._items.append(self.generator.generate())

    def consume_next(self) -> Outcome:
        if not self._items:
            self.refill()
        outcome = self._items.popleft()
        self.refill()
        return outcome

    def peek(self, n: int) -> List[Outcome]:
        self.refill()
        if n <= 0:
            return []
        return list(self._items)[:n]

    def inject(self, values: Iterable) -> List[Outcome]:
        """Replaces the queue with the given multipliers, then tops it up."""
        multipliers = parse_multipliers(values)
        self._items.clear()
        injected = [Outcome(multiplier=m) for m in multipliers]
        self._items.extend(injected)
        self.refill()
        return injected

    def set_generator(self, generator) -> None:
        """Switches strategy and rebuilds the buffer from the new generator."""
        self.generator = generator
        self._items.clear()
        self.refill()
