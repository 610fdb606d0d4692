"""Domain-specific errors for avcontrols."""


class AVControlsError(Exception):
    """Base error for avcontrols."""


# =============================================================================
# Device errors
# =============================================================================

class DeviceError(AVControlsError):
    """Base error for a failed device API call."""


class TransportError(DeviceError):
    """Raised on connection failures and timeouts."""


class HttpError(DeviceError):
    """Raised when a device answers with an HTTP status of 400 or above."""

    def __init__(self, status, body=""):
        self.status = status
        self.body = body
        super().__init__(f"HTTP error: {status} - Response: {body}")


class DecodeError(DeviceError):
    """Raised when a device response is not a {"data": <string>} envelope."""


class UnknownActionError(AVControlsError):
    """Raised when an IR action has no configured payload."""

    def __init__(self, action):
        self.action = action
        super().__init__(f"Invalid action: {action}")


# =============================================================================
# Configuration validation errors
# =============================================================================

class ConfigValidationError(AVControlsError):
    """Base error for rejected settings submissions."""


class InvalidIPError(ConfigValidationError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"Invalid IP address for receiver: {name}")


class InvalidChannelError(ConfigValidationError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"Invalid channel number for transmitter: {name}")


class DuplicateNameError(ConfigValidationError):
    def __init__(self, section, name):
        self.section = section
        self.name = name
        super().__init__(f"Duplicate {section} name: {name}")


class InvalidNumberError(ConfigValidationError):
    def __init__(self, message="Invalid numeric value in global settings"):
        super().__init__(message)


class VolumeRangeError(ConfigValidationError):
    def __init__(self, message="Minimum volume must be less than maximum volume"):
        super().__init__(message)


class StepError(ConfigValidationError):
    def __init__(self, message="Volume step must be greater than 0"):
        super().__init__(message)


class TimeoutConfigError(ConfigValidationError):
    def __init__(self, message="API timeout must be greater than 0"):
        super().__init__(message)


class InvalidURLError(ConfigValidationError):
    def __init__(self, message="Invalid home URL"):
        super().__init__(message)


# =============================================================================
# Config store errors
# =============================================================================

class StoreError(AVControlsError):
    """Base error for config persistence failures."""


class NotWritableError(StoreError):
    """Raised when the live config artifact cannot be written."""

    def __init__(self, path, permissions, owner, effective_user):
        self.path = path
        self.permissions = permissions
        self.owner = owner
        self.effective_user = effective_user
        super().__init__(
            f"Config file is not writable. Current permissions: {permissions}. "
            f"File owner: {owner}. Web user: {effective_user}. "
            f"Please make the file writable by running: chmod 666 {path}"
        )


class BackupFailedError(StoreError):
    def __init__(self, message="Failed to create backup file"):
        super().__init__(message)


class WriteFailedError(StoreError):
    def __init__(self, message="Failed to write to config file. Please check file permissions."):
        super().__init__(message)


class InvalidBackupError(StoreError):
    def __init__(self, message="Invalid backup file selected."):
        super().__init__(message)
