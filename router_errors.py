"""
Exception hierarchy for the router management client
"""


class RouterClientError(Exception):
    """Base class for every error raised by the router client"""


class ConfigError(RouterClientError, ValueError):
    """Bad constructor arguments (empty URL or credentials, unparsable URL)"""


class TransportError(RouterClientError):
    """Network or connection failure talking to the router"""


class ProtocolError(RouterClientError):
    """Unexpected response: malformed XML, missing fields or verification token"""


class AuthError(RouterClientError):
    """
    Login handshake failed.

    The failing step is kept in ``step`` and the underlying error is chained
    as ``__cause__``. The whole handshake has to be redone after this.
    """

    def __init__(self, step: str, reason: Exception):
        self.step = step
        self.reason = reason
        super().__init__(f"login failed during {step}: {reason}")


class DeviceError(RouterClientError):
    """The router answered with an <error> document"""

    def __init__(self, code, message: str = ""):
        self.code = code
        self.message = message
        detail = f"router returned error {code}"
        if message:
            detail += f": {message}"
        super().__init__(detail)
