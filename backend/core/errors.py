"""
errors.py — Request-level failures raised by the core.

Routes turn these into HTTP responses; row-level problems during bulk mark
entry are reported as data and never raised.
"""


class EngineError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EngineError, ValueError):
    """Missing or malformed parameters, unknown exam, invalid pathway."""
    status_code = 400


class NotFoundError(EngineError, LookupError):
    status_code = 404


class ConflictError(EngineError):
    status_code = 409


class RenderError(EngineError):
    """The PDF/Excel renderer failed."""
    status_code = 500
