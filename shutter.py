"""
Thorlabs SH05 shutter driven by a Kinesis K-Cube KSC101 solenoid controller.

Example:
    serials = Shutter.list_devices()
    sh = Shutter()
    sh.connect(serials[0])
    sh.operating_mode = "manual"
    sh.operating_state = "active"    # opens the shutter in manual mode
    sh.operating_state = "inactive"  # closes it
    print(sh.state)                  # 'Open' / 'Closed'
    sh.disconnect()
"""
import logging
from collections import namedtuple

import dll_loader
from constants import (SOLENOID_DLL, SHUTTER_MODES, SHUTTER_STATES, SOLENOID_OUTPUT_BIT, SOLENOID_INTERLOCK_BIT,
                       LOG_FORMAT, LOG_DATEFMT)
from errors import ReadOnlyPropertyError
from kinesis_device import KinesisDevice
from validation import resolve_choice

_logger = logging.getLogger(__name__)

ShutterStatus = namedtuple("ShutterStatus", ["bits", "output_enabled", "interlock_enabled"])


class Shutter(KinesisDevice):
    DLL_NAMES = KinesisDevice.DLL_NAMES + (SOLENOID_DLL,)
    NAMESPACE = "Thorlabs.MotionControl.KCube.SolenoidCLI"
    DEVICE_CLASS = "KCubeSolenoid"
    FACTORY = "CreateKCubeSolenoid"
    LABEL = "Shutter"

    def __init__(self, serial_no=None):
        self.stage_name = None
        self.settings = None
        self.current_settings = None
        self._modes = ()
        self._states = ()
        super().__init__(serial_no)

    def _after_connect(self, serial_no):
        namespace = dll_loader.import_namespace(self.NAMESPACE)
        self.settings = self.device.GetSolenoidConfiguration(serial_no)
        self.stage_name = str(self.settings.DeviceSettingsName)
        self.current_settings = namespace.ThorlabsKCubeSolenoidSettings.GetSettings(self.settings)

        # Vendor enums, in the order of SHUTTER_MODES / SHUTTER_STATES
        status = namespace.SolenoidStatus
        self._modes = tuple(getattr(status.OperatingModes, name) for name in SHUTTER_MODES)
        self._states = tuple(getattr(status.OperatingStates, name) for name in SHUTTER_STATES)

    @property
    def front_panel_lock(self):
        device = self._require_connected()
        device.RequestFrontPanelLocked()
        return bool(device.GetFrontPanelLocked())

    @front_panel_lock.setter
    def front_panel_lock(self, locked):
        device = self._require_connected()
        if not device.CanDeviceLockFrontPanel():
            _logger.warning("[Shutter] The device does not support front panel locking.")
            return
        device.SetFrontPanelLock(bool(locked))

    @property
    def operating_mode(self):
        return str(self._require_connected().GetOperatingMode())

    @operating_mode.setter
    def operating_mode(self, mode):
        device = self._require_connected()
        idx = resolve_choice(mode, SHUTTER_MODES, "Operating mode")
        device.SetOperatingMode(self._modes[idx])

    @property
    def operating_state(self):
        return str(self._require_connected().GetOperatingState())

    @operating_state.setter
    def operating_state(self, state):
        device = self._require_connected()
        idx = resolve_choice(state, SHUTTER_STATES, "Operating state")
        device.SetOperatingState(self._states[idx])

    @property
    def state(self):
        """Solenoid state reported by the controller: 'Open' / 'Closed'."""
        return str(self._require_connected().GetSolenoidState())

    @state.setter
    def state(self, value):
        raise ReadOnlyPropertyError("state")

    def open_shutter(self):
        self.operating_mode = "manual"
        self.operating_state = "active"

    def close_shutter(self):
        self.operating_mode = "manual"
        self.operating_state = "inactive"

    def status(self):
        bits = self.status_bits()
        status = ShutterStatus(bits, bool(bits & SOLENOID_OUTPUT_BIT), bool(bits & SOLENOID_INTERLOCK_BIT))
        _logger.info(f"[Shutter] Solenoid output is {'enabled' if status.output_enabled else 'disabled'}")
        _logger.info(f"[Shutter] Solenoid interlock state is {'enabled' if status.interlock_enabled else 'disabled'}")
        return status

    def _before_close(self):
        self.operating_state = "inactive"


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    serials = Shutter.list_devices()
    print(f"Shutters found: {serials}")
    with Shutter(serials[0]) as shutter:
        shutter.open_shutter()
        print(f"Shutter state: {shutter.state}")
        shutter.close_shutter()
        shutter.status()
