from ..config import settings

DEFAULT_COMPLETION_THRESHOLD = 0.90


def is_complete(watched_ratio: float, threshold: float = DEFAULT_COMPLETION_THRESHOLD) -> bool:
    return watched_ratio >= threshold


class CompletionPolicy:
    """Decides when a watched ratio counts as a completed lesson."""

    def __init__(self, threshold: float | None = None):
        if threshold is None:
            threshold = settings.COMPLETION_THRESHOLD
        if not 0 < threshold <= 1:
            raise ValueError(f"completion threshold must be in (0, 1], got {threshold}")
        self.threshold = threshold

    def is_complete(self, watched_ratio: float) -> bool:
        return is_complete(watched_ratio, self.threshold)
