"""Worker error types."""


class WorkerError(Exception):
    """Base error for worker-side failures."""


class FunctionNotFoundError(WorkerError, LookupError):
    """Raised when an invocation names a function id that was never loaded."""

    def __init__(self, function_id: str) -> None:
        super().__init__(f"Function id '{function_id}' is not loaded")
        self.function_id = function_id


class EntryPointError(WorkerError):
    """Raised when a script file cannot be imported or has no callable entry point."""


class UserCodeError(WorkerError):
    """Wraps an exception raised or reported by a user function."""

    def __init__(self, original: BaseException) -> None:
        super().__init__(str(original))
        self.original = original
