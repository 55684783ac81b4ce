class StoreUnavailable(Exception):
    """The persistent preference backend could not be read or written."""


class MessageDropped(Exception):
    """No live receiver exists for a message (frame torn down or never loaded)."""


class TransformNodeSkipped(Exception):
    """A single node could not be transformed; the pass continues without it."""
