class MalformedEventError(ValueError):
    """Inbound webhook payload cannot be routed (no kind or no call id)."""

    def __init__(self, message: str, kind: str | None = None):
        super().__init__(message)
        self.kind = kind


class SessionNotFoundError(LookupError):
    pass


class PersistenceError(RuntimeError):
    """A session store read-modify-write could not be applied."""
