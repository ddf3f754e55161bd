"""Synchronous signal/slot helper used for settings changes and progress events."""

from typing import Callable, List


class Signal:
    """Ordered list of slots called in registration order."""

    def __init__(self):
        self.slots: List[Callable] = []

    def connect(self, slot: Callable) -> Callable:
        """Register ``slot``; returns it so this can be used as a decorator."""
        if slot not in self.slots:
            self.slots.append(slot)
        return slot

    def disconnect(self, slot: Callable):
        if slot in self.slots:
            self.slots.remove(slot)

    def disconnect_all(self):
        self.slots.clear()

    def emit(self, *args, **kwargs) -> int:
        # Copy: a slot may disconnect itself while handling
        slots = list(self.slots)
        for slot in slots:
            slot(*args, **kwargs)
        return len(slots)

    def __len__(self):
        return len(self.slots)
