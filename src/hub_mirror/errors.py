#!/usr/bin/env python3

"""
Exception hierarchy shared by the mirror components.

Only ConfigError, AuthError and RateLimitedError abort a batch. The others are
contained by the planner at tag or repository scope.
"""


class MirrorError(Exception):
    """Base class for all hub-mirror errors"""


class ConfigError(MirrorError):
    """Settings file, repository list or credentials are missing or invalid"""


class AuthError(MirrorError):
    """A usable hub session token could not be obtained"""


class TransientNetworkError(MirrorError):
    """Connection failure, timeout or 5xx response worth retrying"""


class MetadataUnavailable(MirrorError):
    """A metadata query kept failing after the retry budget was spent"""


class RateLimitedError(MirrorError):
    """The registry answered 429; the whole batch must stop"""

    def __init__(self, message: str, reference: str = None):
        super().__init__(message)
        self.reference = reference


class TransferError(MirrorError):
    """An external copy tool exited with an error"""

    def __init__(self, message: str, tool: str = None, output: str = ""):
        super().__init__(message)
        self.tool = tool
        self.output = output
