"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class NslabelError(Exception):
    """Base class for all operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error indicates a failure
        that will not resolve without outside intervention
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class NslabelFatalError(NslabelError):
    """A NslabelFatalError indicates an unexpected, and likely unrecoverable,
    failure
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(NslabelFatalError):
    """Exception caused by invalid operator configuration"""


class ClusterError(NslabelFatalError):
    """Exception caused when a cluster operation fails in an unexpected way"""


## Expected Errors #############################################################


class NslabelExpectedError(NslabelError):
    """A NslabelExpectedError indicates an expected failure condition that
    terminates the current operation
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class PolicyError(NslabelExpectedError):
    """Exception raised when a NamespaceLabel violates a policy (more than one
    per namespace or a protected label). It persists until the user edits the
    NamespaceLabel.
    """


class ConflictError(NslabelExpectedError):
    """Exception raised when an update is rejected because the object changed
    since it was read (optimistic concurrency conflict)
    """


class DecodeError(NslabelExpectedError):
    """Exception raised when an admission request can not be decoded"""


## Assertions ##################################################################


def assert_policy(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PolicyError"""
    if not condition:
        raise PolicyError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used to validate operator configuration.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching the target
    namespace) must succeed.
    """
    if not condition:
        raise ClusterError(message)
