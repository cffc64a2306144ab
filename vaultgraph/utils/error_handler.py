import logging
from functools import wraps
from typing import Any, Callable, TypeVar

F = TypeVar('F', bound=Callable[..., Any])

class EngineError(Exception):
    """Base exception class for graph and search engine errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}

class PayloadError(EngineError):
    """Exception raised when a request payload does not match its message type."""
    pass

class UnknownMessageTypeError(EngineError):
    """Exception raised for a request whose type has no handler."""
    pass

class ConfigurationError(EngineError):
    """Exception raised for configuration-related errors."""
    pass

class WorkerError(EngineError):
    """Base exception for failures seen by the caller side of the worker."""
    pass

class WorkerNotInitializedError(WorkerError):
    """Exception raised when a message is sent without a running worker."""
    pass

class WorkerTimeoutError(WorkerError):
    """Exception raised when the worker does not answer in time."""
    pass

class WorkerRequestError(WorkerError):
    """Exception raised when the worker replies with success=False."""
    pass

def log_errors(logger: logging.Logger) -> Callable[[F], F]:
    """Decorator to handle errors and log them consistently."""
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except EngineError as e:
                logger.error(f"Error in {func.__name__}: {str(e)}",
                           extra={"error_details": e.details})
                raise
            except Exception as e:
                logger.error(f"Unexpected error in {func.__name__}: {str(e)}")
                raise EngineError(f"Unexpected error: {str(e)}",
                                  details={"operation": func.__name__}) from e
        return wrapper
    return decorator
