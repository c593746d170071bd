# errors.py
# Exception taxonomy for the goal engine.
#
# Only GoalFileError and TurnLimitExceeded abort a run. Everything else is
# caught at the dispatch boundary and folded into the observation stream.


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(EngineError):
    """Raised when required configuration is missing or malformed."""


class GoalFileError(ConfigurationError):
    """Raised when a goal file does not contain exactly three sections. Always fatal."""


class TurnLimitExceeded(EngineError):
    """Raised when the run-wide turn ceiling is reached. Always fatal."""


class BridgeError(EngineError):
    """Raised when an external service answers with an error or goes away."""


class BridgeTimeout(BridgeError, TimeoutError):
    """Raised when an external service does not answer within the call timeout."""
