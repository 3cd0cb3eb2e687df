"""Shared pytest fixtures: a fake .NET vendor layer so no runtime or hardware is needed."""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import matplotlib
import pytest

matplotlib.use("Agg")

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import dll_loader  # noqa: E402
from constants import WFS_NAMESPACE, TL4000_NAMESPACE  # noqa: E402
from kinesis_device import DEVICE_MANAGER_NAMESPACE  # noqa: E402

SHUTTER_SERIAL = "68000001"
FLIPPER_SERIAL = "37000001"
WFS_RESOURCE = "USB::0x1313::0x0000::1025"
LDD_RESOURCE = "USB0::0x1313::0x804F::M00869857::INSTR"


# =============================================================================
# System namespace
# =============================================================================

class FakeStringBuilder:
    def __init__(self, capacity=0):
        self.capacity = capacity
        self.value = ""

    def ToString(self):
        return self.value


def _create_instance(element_type, *dims):
    size = 1
    for dim in dims:
        size *= dim
    return [0] * size


def make_system():
    return SimpleNamespace(
        Text=SimpleNamespace(StringBuilder=FakeStringBuilder),
        Array=SimpleNamespace(CreateInstance=_create_instance),
        IntPtr=SimpleNamespace(Zero=0),
        String=str,
        UInt32=int,
        Int32=int,
        Byte="Byte",
        Single="Single",
    )


# =============================================================================
# Kinesis
# =============================================================================

class FakeKinesisClass:
    """Vendor device class with a DevicePrefix and a static factory method."""

    def __init__(self, prefix, factory_name, device_factory):
        self.DevicePrefix = prefix
        self.created = []
        self.on_create = None
        self._device_factory = device_factory
        setattr(self, factory_name, self._create)

    def _create(self, serial_no):
        device = self._device_factory(serial_no)
        if self.on_create is not None:
            self.on_create(device)
        self.created.append(device)
        return device


def make_kinesis_device(serial_no, name, description):
    device = MagicMock()
    device.IsConnected = False
    device.DeviceID = serial_no
    device.IsSettingsInitialized.return_value = True
    device.GetDeviceInfo.return_value = SimpleNamespace(Name=name, Description=description)
    device.GetStatusBits.return_value = 0

    def connect(_serial):
        device.IsConnected = True

    def disconnect(_wait):
        device.IsConnected = False

    device.Connect.side_effect = connect
    device.Disconnect.side_effect = disconnect
    return device


def make_solenoid(serial_no):
    device = make_kinesis_device(serial_no, "KSC101", "KCube Solenoid")
    device.GetSolenoidConfiguration.return_value = SimpleNamespace(DeviceSettingsName="SH05")
    device.CanDeviceLockFrontPanel.return_value = True
    device.GetFrontPanelLocked.return_value = False
    device.GetOperatingMode.return_value = "Manual"
    device.GetOperatingState.return_value = "Inactive"
    device.GetSolenoidState.return_value = "Closed"
    return device


def make_filter_flipper(serial_no):
    device = make_kinesis_device(serial_no, "MFF101", "Motorized Filter Flip Mount")
    device.Position = 1
    device.State = "Idle"

    def set_position(position, _timeout):
        device.Position = position

    device.SetPosition.side_effect = set_position
    return device


# =============================================================================
# Wavefront sensor
# =============================================================================

def _fill(*buffers_and_values):
    for buffer, value in buffers_and_values:
        buffer.value = value


def make_wfs_class(instruments):
    """
    instruments: list of (model, serial, resource, device_id, in_use).
    Every call of the returned class creates a new handle, kept in `.handles`.
    """
    wfs_class = MagicMock()
    wfs_class.BufferSize = 256
    wfs_class.instruments = instruments
    wfs_class.handles = []

    def make_handle(*args):
        handle = MagicMock()
        handle.args = args
        handle.DeviceOffsetWFS30 = 0x400
        handle.DeviceOffsetWFS20 = 0x200
        handle.StatBitHighPower = 0x2
        handle.StatBitLowPower = 0x4
        handle.StatBitHighAmbientLight = 0x8
        handle.ImageBufferSize = 12
        handle.MaxSpotX = 3
        handle.MaxSpotY = 2

        handle.revision_query.side_effect = lambda d, f: _fill((d, "WFS 5.0 "), (f, "FW 1.0"))
        handle.GetInstrumentListLen.return_value = (0, len(instruments))

        def list_info(idx, _id, _in_use, model, serial, resource):
            inst_model, inst_serial, inst_resource, device_id, in_use = instruments[idx]
            _fill((model, inst_model), (serial, inst_serial), (resource, inst_resource))
            return 0, device_id, in_use

        handle.GetInstrumentListInfo.side_effect = list_info
        handle.GetInstrumentInfo.side_effect = lambda m, n, s, c: _fill(
            (m, "Thorlabs GmbH"), (n, "WFS30-7AR"), (s, "M00000001"), (c, "CAM0001"))
        handle.GetMlaCount.return_value = (0, 2)
        handle.GetMasterGainRange.return_value = (0, 1.0, 5.0)
        handle.GetExposureTimeRange.return_value = (0, 0.08, 60.0, 0.01)
        handle.ConfigureCam.return_value = (0, 47, 29)
        handle.GetReferencePlane.return_value = (0, 1)
        handle.GetTriggerMode.return_value = (0, 3)
        handle.TakeSpotfieldImageAutoExpos.return_value = (0, 1.5, 1.0)
        handle.GetStatus.return_value = (0, 0)
        handle.AverageImage.return_value = (0, 1)
        handle.GetBlackLevelOffset.return_value = (0, 100)
        handle.GetExposureTime.return_value = (0, 2.5)
        handle.GetMasterGain.return_value = (0, 1.5)
        handle.GetPupil.return_value = (0, -0.5, -2.0, 1.1, 1.6)
        handle.CalcBeamCentroidDia.return_value = (0, 0.1, 0.2, 3.0, 3.5)

        def spotfield_copy(buffer, _rows, _columns):
            for i in range(6):
                buffer[i] = i * 10
            return 0, 2, 3

        handle.GetSpotfieldImageCopy.side_effect = spotfield_copy

        def zernike_lsf(_orders, coefficients, orders_rms, _roc):
            for i in range(len(coefficients)):
                coefficients[i] = float(i)
                orders_rms[i] = 10.0 + i
            return 0, 4, 123.0

        handle.ZernikeLsf.side_effect = zernike_lsf

        def calc_wavefront(_type, _limit, wavefront):
            for i in range(len(wavefront)):
                wavefront[i] = i * 0.5

        handle.CalcWavefront.side_effect = calc_wavefront
        handle.CalcWavefrontStatistics.return_value = (0, -1.0, 1.5, 2.5, 0.1, 0.6, 0.4)
        handle.CalcFourierOptometric.return_value = (0, 0.1, 0.2, 0.3, 0.4, 0.5, 30.0)

        wfs_class.handles.append(handle)
        return handle

    wfs_class.side_effect = make_handle
    return wfs_class


# =============================================================================
# Laser diode driver
# =============================================================================

def make_tl4000_namespace():
    namespace = SimpleNamespace(TL4000=MagicMock(), TL4000Constants=SimpleNamespace(AttrSetVal=0))

    def make_handle(*args):
        handle = MagicMock()
        handle.args = args
        handle.revisionQuery.side_effect = lambda d, f: _fill((d, "1.1.0"), (f, "2.3.1"))
        handle.getLdCurrSetpoint.return_value = (0, 0.15)
        handle.getTecCurrSetpoint.return_value = (0, 0.5)
        handle.getTecCurrLimit.return_value = (0, 1.0)
        handle.getTecOutputState.return_value = (0, False)
        handle.getLdOutputState.return_value = (0, False)
        handle.getModState.return_value = (0, False)
        return handle

    namespace.TL4000.side_effect = make_handle
    return namespace


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def vendor(monkeypatch):
    """Install fake vendor namespaces behind dll_loader and return them."""
    solenoid_class = FakeKinesisClass(68, "CreateKCubeSolenoid", make_solenoid)
    flipper_class = FakeKinesisClass(37, "CreateFilterFlipper", make_filter_flipper)
    device_lists = {68: [SHUTTER_SERIAL], 37: [FLIPPER_SERIAL]}

    device_manager = MagicMock()
    device_manager.GetDeviceList.side_effect = lambda prefix: list(device_lists.get(prefix, []))
    use_option = SimpleNamespace(UseDeviceSettings="UseDeviceSettings")

    fake = SimpleNamespace(
        system=make_system(),
        device_manager=device_manager,
        device_lists=device_lists,
        solenoid_class=solenoid_class,
        flipper_class=flipper_class,
        wfs_class=make_wfs_class([("WFS30-7AR", "M00000001", WFS_RESOURCE, 1025, False)]),
        tl4000=make_tl4000_namespace(),
        load_assemblies=MagicMock(),
    )
    namespaces = {
        "System": fake.system,
        DEVICE_MANAGER_NAMESPACE: SimpleNamespace(
            DeviceManagerCLI=device_manager,
            DeviceConfiguration=SimpleNamespace(DeviceSettingsUseOptionType=use_option)),
        "Thorlabs.MotionControl.KCube.SolenoidCLI": SimpleNamespace(
            KCubeSolenoid=solenoid_class,
            ThorlabsKCubeSolenoidSettings=MagicMock(),
            SolenoidStatus=SimpleNamespace(
                OperatingModes=SimpleNamespace(Manual="Manual", SingleToggle="SingleToggle",
                                               AutoToggle="AutoToggle", Triggered="Triggered"),
                OperatingStates=SimpleNamespace(Inactive="Inactive", Active="Active"))),
        "Thorlabs.MotionControl.FilterFlipperCLI": SimpleNamespace(FilterFlipper=flipper_class),
        WFS_NAMESPACE: SimpleNamespace(WFS=fake.wfs_class),
        TL4000_NAMESPACE: fake.tl4000,
    }
    fake.namespaces = namespaces

    monkeypatch.setattr(dll_loader, "load_assemblies", fake.load_assemblies)
    monkeypatch.setattr(dll_loader, "import_namespace", lambda name: namespaces[name])
    return fake
