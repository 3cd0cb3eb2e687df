import logging

import dll_loader
from constants import KINESIS_PATH, DEVICE_MANAGER_DLL, GENERIC_MOTOR_DLL, POLLING_MS, SETTINGS_TIMEOUT_MS
from errors import (DeviceAlreadyConnectedError, DeviceNotConnectedError, DeviceNotFoundError,
                    DeviceInitializationError, DeviceDisconnectError, ReadOnlyPropertyError)

_logger = logging.getLogger(__name__)

DEVICE_MANAGER_NAMESPACE = "Thorlabs.MotionControl.DeviceManagerCLI"


class KinesisDevice:
    """
    Common session handling for Kinesis devices driven through the .NET CLI assemblies.
    Subclasses name their assembly, namespace, device class and factory method.
    """
    DLL_NAMES = (DEVICE_MANAGER_DLL, GENERIC_MOTOR_DLL)
    NAMESPACE = None
    DEVICE_CLASS = None
    FACTORY = None
    LABEL = "Kinesis device"

    def __init__(self, serial_no=None):
        self.device = None
        self.serial_no = None
        self.device_info = None
        self.controller_name = None
        self.controller_description = None

        self._device_class = self.load_dlls()
        # Builds the vendor device list in case it was not done beforehand
        if not self.list_devices():
            _logger.warning(f"No compatible Thorlabs {self.LABEL} devices found!")

        if serial_no is not None:
            self.connect(serial_no)

    @classmethod
    def load_dlls(cls):
        """Load the Kinesis DLLs (if not already loaded) and return the device class."""
        dll_loader.load_assemblies(KINESIS_PATH, cls.DLL_NAMES)
        return getattr(dll_loader.import_namespace(cls.NAMESPACE), cls.DEVICE_CLASS)

    @classmethod
    def list_devices(cls):
        """Return the serial numbers of the connected devices of this type."""
        device_class = cls.load_dlls()
        manager = dll_loader.import_namespace(DEVICE_MANAGER_NAMESPACE).DeviceManagerCLI
        manager.BuildDeviceList()
        return [str(serial) for serial in manager.GetDeviceList(device_class.DevicePrefix)]

    @property
    def is_connected(self):
        return self.device is not None and bool(self.device.IsConnected)

    @is_connected.setter
    def is_connected(self, value):
        raise ReadOnlyPropertyError("is_connected")

    def _require_connected(self):
        if not self.is_connected:
            raise DeviceNotConnectedError()
        return self.device

    def connect(self, serial_no):
        """Connect and initialize the device with the given serial number."""
        if self.is_connected:
            raise DeviceAlreadyConnectedError()
        if self.device is not None:
            # Handle left over from a dropped USB link
            self._release(self.device)
            self.device = None

        serial_no = str(serial_no)
        prefix = str(int(self._device_class.DevicePrefix))
        if serial_no[:2] != prefix:
            raise DeviceNotFoundError(f"Thorlabs {self.LABEL} not recognised: {serial_no}")

        device = None
        try:
            device = getattr(self._device_class, self.FACTORY)(serial_no)
            device.Connect(serial_no)

            if not device.IsSettingsInitialized():
                device.WaitForSettingsInitialized(SETTINGS_TIMEOUT_MS)
            if not device.IsSettingsInitialized():
                raise DeviceInitializationError(serial_no)

            device.StartPolling(POLLING_MS)
            device.EnableDevice()  # otherwise any command is ignored

            self.device = device
            self.serial_no = str(device.DeviceID)
            self.device_info = device.GetDeviceInfo()
            self.controller_name = str(self.device_info.Name)
            self.controller_description = str(self.device_info.Description)
            self._after_connect(serial_no)

        except Exception as e:
            self.device = None
            self._release(device)
            if isinstance(e, DeviceInitializationError):
                raise
            raise DeviceInitializationError(serial_no) from e

        _logger.info(f"[{self.LABEL}] {self.controller_name} with S/N {self.serial_no} is connected successfully!")

    def _after_connect(self, serial_no):
        pass

    def _release(self, device):
        if device is None:
            return
        for call in (device.StopPolling, lambda: device.Disconnect(True)):
            try:
                call()
            except Exception as e:
                _logger.debug(f"[{self.LABEL}] Ignoring error while releasing handle: {e}")

    def disconnect(self):
        """Stop polling, disable and disconnect the device."""
        device = self._require_connected()
        try:
            device.StopPolling()
            device.DisableDevice()
            device.Disconnect(True)
        except Exception as e:
            raise DeviceDisconnectError(self.serial_no) from e
        self.device = None
        _logger.info(f"[{self.LABEL}] {self.controller_name} with S/N {self.serial_no} is disconnected successfully!")

    def reset(self, serial_no=None):
        """Reset the connection of the device."""
        device = self._require_connected()
        device.ResetConnection(str(serial_no or self.serial_no))

    def status_bits(self):
        device = self._require_connected()
        device.RequestStatus()  # in principle excessive as polling is enabled
        return int(device.GetStatusBits())

    def _before_close(self):
        pass

    def close(self):
        """Best-effort disconnect. Errors are logged, never raised."""
        if getattr(self, "device", None) is None:
            return
        for step in (self._before_close, self.disconnect):
            try:
                if not self.is_connected:
                    break
                step()
            except Exception as e:
                _logger.warning(f"[{self.LABEL}] Error during teardown of {self.serial_no}: {e}")

        # Link dropped or disconnect failed: the native handle is still held
        if self.device is not None:
            self._release(self.device)
            self.device = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def __del__(self):
        self.close()
