"""
Thorlabs laser diode drivers of the ITC4000 series and the CLD1015, driven through the
Thorlabs.TL4000_64 .NET assembly. Tested against a CLD1015 with TEC.

Get the resource name from the instrument menu (Information => VISA Resource) or from
LaserDiodeDriver.list_resources().
"""
import logging

import pyvisa

import dll_loader
from constants import (TL4000_DLL_PATH, TL4000_DLL, TL4000_NAMESPACE, LDD_DEFAULT_RESOURCE, THORLABS_USB_VID,
                       LDD_USB_PIDS, LOG_FORMAT, LOG_DATEFMT)
from errors import (DeviceAlreadyConnectedError, DeviceNotConnectedError, DeviceNotFoundError,
                    DeviceInitializationError, DeviceDisconnectError, ReadOnlyPropertyError)
from validation import check_finite

_logger = logging.getLogger(__name__)

REVISION_BUFFER_SIZE = 256


def load_dlls():
    """Load the TL4000 interop DLL (if not already loaded) and return its namespace."""
    dll_loader.load_assemblies(TL4000_DLL_PATH, (TL4000_DLL,))
    return dll_loader.import_namespace(TL4000_NAMESPACE)


def _is_laser_driver(resource_name):
    fields = resource_name.split("::")
    if len(fields) < 4 or not fields[0].upper().startswith("USB"):
        return False
    try:
        vid, pid = int(fields[1], 0), int(fields[2], 0)
    except ValueError:
        return False
    return vid == THORLABS_USB_VID and pid in LDD_USB_PIDS


class LaserDiodeDriver:
    def __init__(self, resource_name=None, connect=True):
        self._namespace = load_dlls()
        self._system = dll_loader.import_namespace("System")
        self.device = None
        self.resource_name = None
        self.driver_revision = None
        self.firmware_revision = None
        if connect:
            self.connect(resource_name)

    @staticmethod
    def list_resources():
        """VISA resource names of the attached ITC4000 / CLD1015 drivers."""
        rm = pyvisa.ResourceManager()
        try:
            resources = rm.list_resources("USB?*::INSTR")
        finally:
            rm.close()
        return [r for r in resources if _is_laser_driver(r)]

    @classmethod
    def list_devices(cls):
        """Serial numbers of the attached drivers."""
        return [r.split("::")[3] for r in cls.list_resources()]

    @property
    def is_connected(self):
        return self.device is not None

    @is_connected.setter
    def is_connected(self, value):
        raise ReadOnlyPropertyError("is_connected")

    def _require_connected(self):
        if self.device is None:
            raise DeviceNotConnectedError()
        return self.device

    def connect(self, resource_name=None):
        """Open the driver at `resource_name`, or the first one found."""
        if self.device is not None:
            raise DeviceAlreadyConnectedError()
        if resource_name is None:
            resources = self.list_resources()
            if not resources:
                raise DeviceNotFoundError("No Thorlabs laser diode driver found!")
            resource_name = resources[0]

        device = None
        try:
            device = self._namespace.TL4000(self._system.String(resource_name), True, False)
            driver = self._system.Text.StringBuilder(REVISION_BUFFER_SIZE)
            firmware = self._system.Text.StringBuilder(REVISION_BUFFER_SIZE)
            device.revisionQuery(driver, firmware)
        except Exception as e:
            if device is not None:
                try:
                    device.Dispose()
                except Exception as dispose_error:
                    _logger.debug(f"Ignoring error while releasing {resource_name}: {dispose_error}")
            raise DeviceInitializationError(resource_name) from e

        self.device = device
        self.resource_name = resource_name
        self.driver_revision, self.firmware_revision = driver.ToString(), firmware.ToString()
        _logger.info(f"Thorlabs Laser Diode Driver instrument driver version: {self.driver_revision} {self.firmware_revision}")

    def disconnect(self):
        device = self._require_connected()
        try:
            device.Dispose()
        except Exception as e:
            raise DeviceDisconnectError(self.resource_name) from e
        self.device = None
        _logger.info(f"Laser diode driver at {self.resource_name} is disconnected successfully!")

    def close(self):
        """Best-effort disconnect. Errors are logged, never raised."""
        if getattr(self, "device", None) is None:
            return
        try:
            self.disconnect()
        except Exception as e:
            _logger.warning(f"Error during teardown of {self.resource_name}: {e}")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def __del__(self):
        self.close()

    def _get_set_value(self, getter):
        _, value = getter(self._namespace.TL4000Constants.AttrSetVal, 0.0)
        return float(value)

    # Setpoints, in Amperes

    @property
    def ld_current_setpoint(self):
        """Laser diode current setpoint in constant current CW and QCW mode."""
        return self._get_set_value(self._require_connected().getLdCurrSetpoint)

    @ld_current_setpoint.setter
    def ld_current_setpoint(self, amperes):
        self._require_connected().setLdCurrSetpoint(check_finite(amperes, "Laser diode current setpoint"))

    @property
    def tec_current_setpoint(self):
        """Peltier current setpoint in current source mode."""
        return self._get_set_value(self._require_connected().getTecCurrSetpoint)

    @tec_current_setpoint.setter
    def tec_current_setpoint(self, amperes):
        self._require_connected().setTecCurrSetpoint(check_finite(amperes, "TEC current setpoint"))

    @property
    def tec_current_limit(self):
        return self._get_set_value(self._require_connected().getTecCurrLimit)

    @tec_current_limit.setter
    def tec_current_limit(self, amperes):
        self._require_connected().setTecCurrLimit(check_finite(amperes, "TEC current limit"))

    # Output switches

    @property
    def tec_output(self):
        _, state = self._require_connected().getTecOutputState(False)
        return bool(state)

    @tec_output.setter
    def tec_output(self, value):
        raise ReadOnlyPropertyError("tec_output")

    @property
    def ld_output(self):
        _, state = self._require_connected().getLdOutputState(False)
        return bool(state)

    @ld_output.setter
    def ld_output(self, value):
        raise ReadOnlyPropertyError("ld_output")

    @property
    def modulation(self):
        _, state = self._require_connected().getModState(False)
        return bool(state)

    @modulation.setter
    def modulation(self, value):
        raise ReadOnlyPropertyError("modulation")

    def switch_tec_output(self, on):
        if bool(on) != self.tec_output:
            self.device.switchTecOutput(bool(on))

    def switch_ld_output(self, on):
        if bool(on) != self.ld_output:
            self.device.switchLdOutput(bool(on))

    def switch_modulation(self, on):
        if bool(on) != self.modulation:
            self.device.switchModulation(bool(on))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    with LaserDiodeDriver(LDD_DEFAULT_RESOURCE) as laser:
        print(f"LD current setpoint: {laser.ld_current_setpoint} A")
        laser.ld_current_setpoint = 0.15
        laser.switch_tec_output(True)
        laser.switch_ld_output(True)
        laser.switch_ld_output(False)
        laser.switch_tec_output(False)
