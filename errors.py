class ThorlabsError(RuntimeError):
    """Base class for errors raised by the Thorlabs device wrappers."""


class DllLoadError(ThorlabsError):
    pass


class DeviceNotFoundError(ThorlabsError):
    pass


class DeviceAlreadyConnectedError(ThorlabsError):
    def __init__(self, message="Device is already connected."):
        super().__init__(message)


class DeviceNotConnectedError(ThorlabsError):
    def __init__(self, message="Device not connected."):
        super().__init__(message)


class DeviceInitializationError(ThorlabsError):
    def __init__(self, device):
        super().__init__(f"Unable to initialise device {device}")
        self.device = device


class DeviceDisconnectError(ThorlabsError):
    def __init__(self, device):
        super().__init__(f"Unable to disconnect device {device}")
        self.device = device


class ReadOnlyPropertyError(ThorlabsError, AttributeError):
    def __init__(self, name):
        super().__init__(f"You cannot set the {name} property directly!")
        self.name = name
