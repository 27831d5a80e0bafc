"""Persistence errors raised by the Redis stores."""


class StoreError(Exception):
    """A stored record could not be read or written."""


class NotFoundError(StoreError):
    """The requested record does not exist."""
