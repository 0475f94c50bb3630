class MalformedJobError(ValueError):
    """Queue entry that cannot be decoded into a JobDescriptor."""

class WorkerStartupError(RuntimeError):
    """Worker could not reach the Result Store or Redis before entering its loop."""

class DatabaseUnavailableError(RuntimeError):
    pass

class StorageError(RuntimeError):
    pass
