class TransportError(Exception):
    """A broker or history store transport failed (e.g. redis went away).

    Raised by the redis-backed implementations so callers can log and carry on.
    """

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause
