"""
Checkpoint accumulator for streamed output.

``feed`` is called with every text delta and answers whether the caller
should persist a checkpoint now.
"""

CHECKPOINT_INTERVAL_CHARS = 500


class CheckpointAccumulator:
    def __init__(self, interval: int = CHECKPOINT_INTERVAL_CHARS):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._parts = []
        self._length = 0
        self.last_checkpoint_length = 0

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __len__(self) -> int:
        return self._length

    def feed(self, delta: str) -> bool:
        if delta:
            self._parts.append(delta)
            self._length += len(delta)
        return self._length - self.last_checkpoint_length >= self.interval

    def mark_checkpoint(self) -> int:
        """Advance the checkpoint watermark; returns the new value."""
        self.last_checkpoint_length = self._length
        return self.last_checkpoint_length
