from typing import Any, Optional


class UserOpError(Exception):
    """Base class for errors raised while preparing or submitting a UserOp."""


class ConfigurationError(UserOpError):
    pass


class NetworkError(UserOpError):
    """Transport-level failure of a JSON-RPC request."""


class RpcError(UserOpError):
    """JSON-RPC error object returned by a node or a bundler."""

    def __init__(
        self,
        method: str,
        code: Optional[int],
        message: str,
        data: Any = None,
    ):
        super().__init__(f"'{method}' failed with error {code}: {message}")
        self.method = method
        self.code = code
        self.message = message
        self.data = data


class DerivationError(UserOpError):
    """The sender address can't be resolved."""


class EstimationError(UserOpError):
    """The bundler failed to estimate gas for the UserOp."""


class SubmissionError(UserOpError):
    """The bundler rejected the UserOp."""
