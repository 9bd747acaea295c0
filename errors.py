class RunnerError(Exception):
    """Base class for every error raised by this project."""


class ConfigError(RunnerError):
    pass


class Cancelled(RunnerError):
    """Raised when the stop event is set or a retry deadline has passed."""


class NoEndpointsRemaining(RunnerError):
    def __init__(self, tried: list):
        self.tried = list(tried)
        super().__init__(f"No RPC endpoints left to fail over to (tried: {', '.join(self.tried)})")


class RetryExhausted(RunnerError):
    def __init__(self, last_error: Exception, attempts: int, description: str = ""):
        self.last_error = last_error
        self.attempts = attempts
        self.description = description
        what = f"{description} " if description else ""
        super().__init__(f"{what}failed after {attempts} attempts: {last_error}")
