"""
Error taxonomy of the categorization engine.

Only ``UnknownStrategyError``, ``StrategyUnavailableError`` and
``BatchAbortedError`` ever reach callers of the orchestrator. The others are
raised internally and converted into log lines or fallback results.
"""


class CategorizationError(Exception):
    """Base class for every engine error."""


class StrategyExecutionError(CategorizationError):
    def __init__(self, strategy_name: str, cause: BaseException) -> None:
        self.strategy_name = strategy_name
        self.cause = cause
        detail = str(cause) or cause.__class__.__name__
        super().__init__(f"Strategy {strategy_name} failed: {detail}")


class NoStrategiesAvailableError(CategorizationError):
    def __init__(self, message: str = "No categorization strategies available") -> None:
        super().__init__(message)


class UnknownStrategyError(CategorizationError):
    def __init__(self, strategy_name: str) -> None:
        self.strategy_name = strategy_name
        super().__init__(f"Strategy {strategy_name} not found")


class StrategyUnavailableError(CategorizationError):
    def __init__(self, strategy_name: str) -> None:
        self.strategy_name = strategy_name
        super().__init__(f"Strategy {strategy_name} is not available")


class BatchAbortedError(CategorizationError):
    def __init__(self, completed: int = 0, total: int = 0) -> None:
        self.completed = completed
        self.total = total
        super().__init__("Batch categorization aborted")


class PersistenceError(CategorizationError):
    def __init__(self, key: str, cause: BaseException | None = None) -> None:
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Persistence failed for key '{key}'{detail}")
