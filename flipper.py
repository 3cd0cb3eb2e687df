import logging

import dll_loader
from constants import FLIPPER_DLL, FLIPPER_POSITIONS, LOG_FORMAT, LOG_DATEFMT
from errors import ReadOnlyPropertyError
from kinesis_device import KinesisDevice, DEVICE_MANAGER_NAMESPACE
from validation import check_int_range

_logger = logging.getLogger(__name__)


class Flipper(KinesisDevice):
    """Thorlabs MFF101/MFF10x motorized filter flip mount over Kinesis USB."""
    DLL_NAMES = KinesisDevice.DLL_NAMES + (FLIPPER_DLL,)
    NAMESPACE = "Thorlabs.MotionControl.FilterFlipperCLI"
    DEVICE_CLASS = "FilterFlipper"
    FACTORY = "CreateFilterFlipper"
    LABEL = "Flipper"

    def __init__(self, serial_no=None):
        self.prefix = None
        self.settings = None
        super().__init__(serial_no)

    def _after_connect(self, serial_no):
        self.prefix = int(self.serial_no[:2])
        configuration = dll_loader.import_namespace(DEVICE_MANAGER_NAMESPACE).DeviceConfiguration
        use_device_settings = configuration.DeviceSettingsUseOptionType.UseDeviceSettings
        self.settings = self.device.GetDeviceConfiguration(serial_no, use_device_settings)

    @property
    def state(self):
        """Motion state reported by the device, e.g. 'Idle' / 'Moving'."""
        return str(self._require_connected().State)

    @state.setter
    def state(self, value):
        raise ReadOnlyPropertyError("state")

    @property
    def position(self):
        """Current position: 1 (down) or 2 (up)."""
        return int(self._require_connected().Position)

    @position.setter
    def position(self, new_position):
        self.set_position(new_position)

    def set_position(self, new_position, timeout_ms=0):
        """Move to position 1 or 2. A timeout of 0 returns immediately while the mount is moving."""
        device = self._require_connected()
        new_position = check_int_range(new_position, min(FLIPPER_POSITIONS), max(FLIPPER_POSITIONS), "Flipper position")
        system = dll_loader.import_namespace("System")
        device.SetPosition(system.UInt32(new_position), system.Int32(int(timeout_ms)))

    def toggle(self, timeout_ms=0):
        self.set_position(2 if self.position == 1 else 1, timeout_ms)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    serials = Flipper.list_devices()
    print(f"Flippers found: {serials}")
    flipper = Flipper()
    flipper.connect(serials[0])
    print(f"Position: {flipper.position}, state: {flipper.state}")
    flipper.set_position(2, timeout_ms=800)
    print(f"Position: {flipper.position}")
    flipper.disconnect()
