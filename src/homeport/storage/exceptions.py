class StorageError(Exception):
    """Base class for storage orchestration errors."""


class StorageValidationError(StorageError):
    """A create request failed a safety check before anything was touched."""

    def __init__(self, rule: str, message: str):
        super().__init__(message)
        self.rule = rule
        self.message = message


class DeviceBusyError(StorageValidationError):
    def __init__(self, devices):
        self.devices = sorted(devices)
        super().__init__(
            "device_busy",
            f"Device already in use by another storage task: {', '.join(self.devices)}",
        )


class StepFailed(StorageError):
    """An external command in a provisioning pipeline returned an error."""

    def __init__(self, step: str, message: str):
        super().__init__(message)
        self.step = step
        self.message = message
