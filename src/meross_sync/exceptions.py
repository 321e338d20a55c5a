"""Exception hierarchy for device I/O and command failures."""

from __future__ import annotations


class MerossSyncError(Exception):
    """Base class for all meross-sync errors."""


class CommandTimeoutError(MerossSyncError):
    """A device operation did not finish within its deadline.

    Raised by the command queue when a task overruns its execution timeout,
    and by transports when the underlying request times out. The message
    always contains "timed out" so connectivity classification can match it.

    Attributes:
        operation: Label of the operation that timed out
        timeout_seconds: Deadline that was exceeded

    """

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        """Initialize timeout error with operation label and deadline."""
        self.operation: str = operation
        self.timeout_seconds: float = timeout_seconds
        super().__init__(f"{operation} timed out after {timeout_seconds}s")


class TransportError(MerossSyncError):
    """Any non-timeout I/O failure while talking to the device.

    Attributes:
        reason: Failure description, including the OS error code name when known

    """

    def __init__(self, reason: str) -> None:
        """Initialize transport error with reason."""
        self.reason: str = reason
        super().__init__(f"Transport error: {reason}")


class MalformedResponseError(MerossSyncError):
    """A device response lacked the fields the request expects.

    Attributes:
        namespace: Namespace of the request whose response was malformed
        missing: Dotted path of the absent field

    """

    def __init__(self, namespace: str, missing: str) -> None:
        """Initialize malformed response error."""
        self.namespace: str = namespace
        self.missing: str = missing
        super().__init__(f"Malformed {namespace} response: missing {missing}")


class CommunicationFailure(MerossSyncError):
    """A state change request could not be delivered to the device.

    This is the only error surfaced to callers of set_desired_state; the
    underlying cause is chained as __cause__.

    Attributes:
        device_name: Name of the device the command was meant for

    """

    def __init__(self, device_name: str) -> None:
        """Initialize communication failure for a device."""
        self.device_name: str = device_name
        super().__init__(f"{device_name}: device busy or unreachable")


class ConfigError(MerossSyncError):
    """The configuration file is missing or invalid."""


class QueueClosedError(MerossSyncError):
    """The device's command queue was closed before the task could finish.

    Attributes:
        queue_name: Log prefix of the closed queue

    """

    def __init__(self, queue_name: str) -> None:
        """Initialize queue closed error."""
        self.queue_name: str = queue_name
        super().__init__(f"{queue_name} queue is closed")
