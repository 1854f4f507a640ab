"""Exceptions raised by the validation pipeline"""


class CheckError(Exception):
    """Base exception for a check that halts validation"""


class UsageError(CheckError):
    """Exception raised for a bad invocation"""


class PrivilegeError(CheckError):
    """Exception raised when not running as root"""


class MissingToolError(CheckError):
    """Exception raised when a required system tool is not installed"""


class InvalidDeviceName(CheckError):
    """Exception raised when the path is not an accepted block device name"""


class DeviceNotFound(CheckError):
    """Exception raised when the path is not an existing block device"""


class AlreadyInPool(CheckError):
    """Exception raised when the device is a member of a ZFS pool"""


class AbortedByOperator(CheckError):
    """Exception raised when the operator refuses to wait for a running self-test"""


class DestructiveTestFailed(CheckError):
    """Exception raised when badblocks exits non-zero"""

    def __init__(self, returncode: int) -> None:
        super().__init__(f"badblocks exited with status {returncode}. Review the output above for bad blocks.")
        self.returncode = returncode


class WipeFailed(CheckError):
    """Exception raised when wipefs fails after a successful write test"""


class PoolQueryFailed(CheckError):
    """Exception raised when pool membership cannot be determined"""
