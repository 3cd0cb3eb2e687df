"""
Thorlabs Shack-Hartmann wavefront sensors of the WFS series, driven through
the Thorlabs.WFS.Interop64 .NET assembly. Tested against a WFS30-7AR.

Example:
    wfs = WavefrontSensor()        # lists the available instruments
    wfs.connect()                  # first (default) instrument, or wfs.connect(1025)
    wfs.configure_device()         # max resolution, 1936x1216 for WFS30
    wfs.set_reference_plane("internal")
    wfs.adjust_image_brightness()
    wfs.pupil = (-0.5, -2.0, 1.1, 1.6)
    wfs.take_spotfield_image()
    wfs.pupil = wfs.beam_centroid
    print(wfs.zernike)
    wfs.disconnect()
"""
import logging
import math
import re
from collections import namedtuple

import matplotlib.pyplot as plt
import numpy as np

import dll_loader
from constants import (WFS_DLL_PATH, WFS_DLL, WFS_NAMESPACE, WFS_RESOURCE_FORMAT, PIXEL_FORMAT_MONO8,
                       CAM_RES_WFS30_1936, CAM_RES_WFS30_MAX_IDX, CAM_RES_WFS20_MAX_IDX, REFERENCE_PLANES,
                       WFS_REF_INTERNAL, PUPIL_CTR_MIN_MM, PUPIL_CTR_MAX_MM, PUPIL_DIA_MIN_MM, PUPIL_DIA_MAX_MM,
                       BLACK_LEVEL_MIN, BLACK_LEVEL_MAX, AVERAGING_MIN, AVERAGING_MAX, ZERNIKE_ORDER_MIN,
                       ZERNIKE_ORDER_MAX, ZERNIKE_ORDER_DEFAULT, MAX_ZERNIKE_MODES, FOURIER_ORDERS,
                       FOURIER_ORDER_DEFAULT, TRIGGER_MODES, WAVEFRONT_MEAS, AUTO_EXPOSURE_ATTEMPTS,
                       LOG_FORMAT, LOG_DATEFMT)
from errors import (DeviceAlreadyConnectedError, DeviceNotConnectedError, DeviceNotFoundError,
                    DeviceInitializationError, DeviceDisconnectError, ReadOnlyPropertyError)
from validation import resolve_choice, check_range, check_int_range

_logger = logging.getLogger(__name__)

WfsInstrument = namedtuple("WfsInstrument", ["index", "device_id", "in_use", "model", "serial_no", "resource_name"])
# Pupil definition and calculated beam centroid share the same layout, in mm
BeamGeometry = namedtuple("BeamGeometry", ["ctr_x", "ctr_y", "dia_x", "dia_y"])
ZernikeResult = namedtuple("ZernikeResult", ["coefficients", "orders_rms", "roc_mm"])
WavefrontResult = namedtuple("WavefrontResult", ["min", "max", "diff", "mean", "rms", "weighted_rms", "map"])
FourierOptometric = namedtuple("FourierOptometric", ["fourier_m", "fourier_j0", "fourier_j45",
                                                     "opto_sphere", "opto_cylinder", "opto_axis_deg"])

_RESOURCE_ID = re.compile(WFS_RESOURCE_FORMAT.replace("{}", r"(\d+)"))


def zernike_modes(order):
    """Number of Zernike modes up to and including `order` (piston included)."""
    return (order + 1) * (order + 2) // 2


def load_dlls():
    """Load the WFS interop DLL (if not already loaded) and return the WFS class."""
    dll_loader.load_assemblies(WFS_DLL_PATH, (WFS_DLL,))
    return dll_loader.import_namespace(WFS_NAMESPACE).WFS


class WavefrontSensor:
    def __init__(self):
        self._wfs_class = load_dlls()
        self._system = dll_loader.import_namespace("System")
        self.device = None
        self._connected = False

        self.serial_no = None
        self.camera_serial_no = None
        self.device_id = None
        self.resource_name = None
        self.manufacturer = None
        self.instrument_name = None
        self.mla_count = 0
        self.exposure_time_min_s = math.nan
        self.exposure_time_max_s = math.nan
        self.exposure_time_incr_s = math.nan
        self.master_gain_min = math.nan
        self.master_gain_max = math.nan

        self._zernike_order = ZERNIKE_ORDER_DEFAULT
        self._fourier_order = FOURIER_ORDER_DEFAULT
        self.cancel_wavefront_tilt = False
        self.dynamic_noise_cut = True
        self._pupil_defined = False
        self._zernike_orders_calculated = None

        handle = self._wfs_class(self._system.IntPtr.Zero)
        driver, firmware = self._string_buffer(), self._string_buffer()
        handle.revision_query(driver, firmware)
        _logger.info(f"WFS instrument driver version: {driver.ToString()}{firmware.ToString()}")

        self.instruments = self.list_instruments()
        count = len(self.instruments)
        _logger.info(f"{count} Thorlabs wavefront sensor{'s' if count != 1 else ''} found")
        for inst in self.instruments:
            _logger.info(f"{inst.index + 1}. Model: {inst.model}, Serial: {inst.serial_no}, "
                         f"Address: {inst.resource_name}, DeviceID: {inst.device_id}")
            if inst.in_use:
                _logger.warning(f"Device {inst.serial_no} seems to be in use - disconnect it and try again!")
            self.serial_no = inst.serial_no
            self.resource_name = inst.resource_name
            self.device_id = inst.device_id

    def _string_buffer(self):
        return self._system.Text.StringBuilder(int(self._wfs_class.BufferSize))

    @classmethod
    def list_instruments(cls):
        wfs_class = load_dlls()
        system = dll_loader.import_namespace("System")
        handle = wfs_class(system.IntPtr.Zero)
        _, count = handle.GetInstrumentListLen(0)

        instruments = []
        for idx in range(int(count)):  # the first instrument has index 0
            model, serial, resource = (system.Text.StringBuilder(int(wfs_class.BufferSize)) for _ in range(3))
            _, device_id, in_use = handle.GetInstrumentListInfo(idx, 0, 0, model, serial, resource)
            instruments.append(WfsInstrument(idx, int(device_id), bool(in_use),
                                             model.ToString(), serial.ToString(), resource.ToString()))
        return instruments

    @classmethod
    def list_devices(cls):
        """Return the serial numbers of the attached wavefront sensors."""
        return [inst.serial_no for inst in cls.list_instruments()]

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    def is_connected(self):
        return self._connected

    @is_connected.setter
    def is_connected(self, value):
        raise ReadOnlyPropertyError("is_connected")

    def _require_connected(self):
        if not self._connected:
            raise DeviceNotConnectedError()
        return self.device

    def connect(self, identifier=None):
        """
        Connect a sensor.
        identifier: None for the default instrument, a DeviceID (int) or a full resource name (str).
        """
        if self._connected:
            raise DeviceAlreadyConnectedError()

        if identifier is None:
            if self.resource_name is None:
                raise DeviceNotFoundError("No Thorlabs wavefront sensor found!")
            resource_name = self.resource_name
        elif isinstance(identifier, str):
            resource_name = identifier
        else:
            resource_name = WFS_RESOURCE_FORMAT.format(check_int_range(identifier, 0, 2**31 - 1, "DeviceID"))

        device = None
        try:
            device = self._wfs_class(self._system.String(resource_name), False, False)

            manufacturer, name, serial, camera_serial = (self._string_buffer() for _ in range(4))
            device.GetInstrumentInfo(manufacturer, name, serial, camera_serial)
            _, mla_count = device.GetMlaCount(0)
            _, gain_min, gain_max = device.GetMasterGainRange(0.0, 0.0)
            self.device = device
            self._update_exposure_range()
        except Exception as e:
            self.device = None
            if device is not None:
                try:
                    device.Dispose()
                except Exception as dispose_error:
                    _logger.debug(f"Ignoring error while releasing {resource_name}: {dispose_error}")
            raise DeviceInitializationError(resource_name) from e

        self._connected = True
        self.resource_name = resource_name
        match = _RESOURCE_ID.fullmatch(resource_name)
        self.device_id = int(match.group(1)) if match else None
        self.manufacturer = manufacturer.ToString()
        self.instrument_name = name.ToString()
        self.serial_no = serial.ToString()
        self.camera_serial_no = camera_serial.ToString()
        self.mla_count = int(mla_count)
        self.master_gain_min = float(gain_min)
        self.master_gain_max = float(gain_max)
        self._pupil_defined = False

        _logger.info(f"Connected successfully to the Wavefront Sensor {self.instrument_name} located at {resource_name}")
        _logger.info(f"Manufacturer:      {self.manufacturer}")
        _logger.info(f"Serial Number WFS: {self.serial_no}")
        _logger.info(f"Serial Number Cam: {self.camera_serial_no}")
        _logger.info(f"{self.mla_count} Multi-Lens Array{'s are' if self.mla_count > 1 else ' is'} available for this instrument")

    def disconnect(self):
        device = self._require_connected()
        try:
            device.Dispose()
        except Exception as e:
            raise DeviceDisconnectError(f"{self.instrument_name} located at {self.resource_name}") from e
        self.device = None
        self._connected = False
        _logger.info(f"{self.instrument_name} located at {self.resource_name} is disconnected successfully!")

    def close(self):
        """Best-effort disconnect. Errors are logged, never raised."""
        if not getattr(self, "_connected", False):
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

    # ------------------------------------------------------------------
    # Camera and reference
    # ------------------------------------------------------------------

    def _update_exposure_range(self):
        _, exp_min, exp_max, exp_incr = self.device.GetExposureTimeRange(0.0, 0.0, 0.0)
        self.exposure_time_min_s = exp_min / 1000
        self.exposure_time_max_s = exp_max / 1000
        self.exposure_time_incr_s = exp_incr / 1000

    def configure_device(self, resolution=None):
        """
        Set the camera to a pre-defined resolution index. This image size needs to fit the beam size and pupil size.
        Without an argument the largest resolution is used (1936x1216 for WFS30).
        """
        device = self._require_connected()
        device_id = self.device_id or 0
        if device_id & int(device.DeviceOffsetWFS30):
            max_idx = CAM_RES_WFS30_MAX_IDX
        elif device_id & int(device.DeviceOffsetWFS20):
            max_idx = CAM_RES_WFS20_MAX_IDX
        else:
            max_idx = None

        if resolution is None:
            resolution = CAM_RES_WFS30_1936
        else:
            upper = max_idx if max_idx is not None else 2**31 - 1
            resolution = check_int_range(resolution, 0, upper, "Pre-defined image size index")

        _, spots_x, spots_y = device.ConfigureCam(PIXEL_FORMAT_MONO8, resolution, 0, 0)
        _logger.info(f"Camera is configured to detect {spots_x} x {spots_y} lenslet spots.")
        self._update_exposure_range()
        return int(spots_x), int(spots_y)

    def set_reference_plane(self, plane=WFS_REF_INTERNAL):
        """Reference plane: 0 / 'internal' or 1 / 'user'."""
        device = self._require_connected()
        device.SetReferencePlane(resolve_choice(plane, REFERENCE_PLANES, "Reference plane"))

    @property
    def reference_plane(self):
        _, plane = self._require_connected().GetReferencePlane(0)
        return REFERENCE_PLANES[int(plane)]

    @reference_plane.setter
    def reference_plane(self, plane):
        self.set_reference_plane(plane)

    def select_mla(self, index):
        device = self._require_connected()
        device.SelectMla(check_int_range(index, 0, max(self.mla_count - 1, 0), "MLA index"))

    @property
    def trigger_mode(self):
        _, mode = self._require_connected().GetTriggerMode(0)
        return TRIGGER_MODES[int(mode)]

    @trigger_mode.setter
    def trigger_mode(self, mode):
        device = self._require_connected()
        device.SetTriggerMode(resolve_choice(mode, TRIGGER_MODES, "Trigger mode"))

    def adjust_image_brightness(self):
        """
        Use the auto exposure feature to get a well exposed camera image.
        Image reading is repeated in case of a badly saturated image. Returns True once the image is fine.
        """
        device = self._require_connected()
        for attempt in range(1, AUTO_EXPOSURE_ATTEMPTS + 1):
            _, exposure, gain = device.TakeSpotfieldImageAutoExpos(0.0, 0.0)
            _, status = device.GetStatus(0)
            if status & int(device.StatBitHighPower):
                _logger.info(f"Try {attempt}. Power too high!")
            elif status & int(device.StatBitLowPower):
                _logger.info(f"Try {attempt}. Power too low!")
            elif status & int(device.StatBitHighAmbientLight):
                _logger.info(f"Try {attempt}. High ambient light!")
            else:
                _logger.info(f"Try {attempt}. All OK! Exposure = {exposure:f}; Gain = {gain:f}")
                return True
        _logger.warning(f"Image brightness not adjusted after {AUTO_EXPOSURE_ATTEMPTS} attempts")
        return False

    def cut_image_noise_floor(self, limit):
        """Set all pixels with intensities below `limit` to zero."""
        device = self._require_connected()
        device.CutImageNoiseFloor(check_int_range(limit, 0, 255, "Noise floor limit"))

    def set_averaging(self, count):
        device = self._require_connected()
        count = check_int_range(count, AVERAGING_MIN, AVERAGING_MAX, "Number of images for averaging")
        _, ready = device.AverageImage(count, 0)
        return bool(ready)

    def set_averaging_rolling(self, count, reset=True):
        device = self._require_connected()
        count = check_int_range(count, AVERAGING_MIN, AVERAGING_MAX, "Number of images for rolling averaging")
        device.AverageImageRolling(count, int(bool(reset)))

    def take_spotfield_image(self):
        self._require_connected().TakeSpotfieldImage()

    # ------------------------------------------------------------------
    # Camera settings
    # ------------------------------------------------------------------

    @property
    def black_level_offset(self):
        _, offset = self._require_connected().GetBlackLevelOffset(0)
        return int(offset)

    @black_level_offset.setter
    def black_level_offset(self, value):
        device = self._require_connected()
        device.SetBlackLevelOffset(check_int_range(value, BLACK_LEVEL_MIN, BLACK_LEVEL_MAX, "Black_Level_Offset value"))

    @property
    def exposure_time(self):
        """Exposure time in seconds."""
        _, exposure_ms = self._require_connected().GetExposureTime(0.0)
        return exposure_ms / 1000

    @exposure_time.setter
    def exposure_time(self, seconds):
        device = self._require_connected()
        seconds = check_range(seconds, self.exposure_time_min_s, self.exposure_time_max_s, "Exposure time in seconds")
        device.SetExposureTime(seconds * 1000, 0.0)

    @property
    def master_gain(self):
        _, gain = self._require_connected().GetMasterGain(0.0)
        return float(gain)

    @master_gain.setter
    def master_gain(self, value):
        device = self._require_connected()
        device.SetMasterGain(check_range(value, self.master_gain_min, self.master_gain_max, "Master_Gain value"), 0.0)

    # ------------------------------------------------------------------
    # Calculation settings
    # ------------------------------------------------------------------

    @property
    def zernike_order(self):
        return self._zernike_order

    @zernike_order.setter
    def zernike_order(self, order):
        self._zernike_order = check_int_range(order, ZERNIKE_ORDER_MIN, ZERNIKE_ORDER_MAX, "Zernike order")

    @property
    def fourier_order(self):
        """Highest Zernike order used for the Fourier and optometric parameters: 2, 4 or 6."""
        return self._fourier_order

    @fourier_order.setter
    def fourier_order(self, order):
        if isinstance(order, bool) or order not in FOURIER_ORDERS:
            raise ValueError(f"Fourier order should be one of {FOURIER_ORDERS}, got {order!r}")
        self._fourier_order = int(order)

    # ------------------------------------------------------------------
    # Pupil and results
    # ------------------------------------------------------------------

    @property
    def pupil(self):
        """Pupil center [X, Y] and diameter [X, Y] in mm, None until a pupil is defined."""
        device = self._require_connected()
        if not self._pupil_defined:
            return None
        _, ctr_x, ctr_y, dia_x, dia_y = device.GetPupil(0.0, 0.0, 0.0, 0.0)
        return BeamGeometry(ctr_x, ctr_y, dia_x, dia_y)

    @pupil.setter
    def pupil(self, value):
        device = self._require_connected()
        if len(value) != 4:
            raise ValueError(f"Pupil should be [ctrX, ctrY, diaX, diaY], got {value!r}")
        ctr_x, ctr_y, dia_x, dia_y = value
        ctr_x, ctr_y = (check_range(v, PUPIL_CTR_MIN_MM, PUPIL_CTR_MAX_MM, "Pupil center position") for v in (ctr_x, ctr_y))
        dia_x, dia_y = (check_range(v, PUPIL_DIA_MIN_MM, PUPIL_DIA_MAX_MM, "Pupil diameter") for v in (dia_x, dia_y))
        device.SetPupil(ctr_x, ctr_y, dia_x, dia_y)
        self._pupil_defined = True

    @property
    def beam_centroid(self):
        """Calculated beam centroid [X, Y] and beam diameter [X, Y] in mm."""
        _, ctr_x, ctr_y, dia_x, dia_y = self._require_connected().CalcBeamCentroidDia(0.0, 0.0, 0.0, 0.0)
        return BeamGeometry(ctr_x, ctr_y, dia_x, dia_y)

    @beam_centroid.setter
    def beam_centroid(self, value):
        raise ReadOnlyPropertyError("beam_centroid")

    @property
    def spotfield_image(self):
        """Take a new image and return a copy of it as a rows x columns uint8 array."""
        device = self._require_connected()
        buffer = self._system.Array.CreateInstance(self._system.Byte, int(device.ImageBufferSize))
        device.TakeSpotfieldImage()
        _, rows, columns = device.GetSpotfieldImageCopy(buffer, 0, 0)
        rows, columns = int(rows), int(columns)
        return np.array(list(buffer)[:rows * columns], dtype=np.uint8).reshape((rows, columns))

    @spotfield_image.setter
    def spotfield_image(self, value):
        raise ReadOnlyPropertyError("spotfield_image")

    def _calc_spot_deviations(self):
        device = self._require_connected()
        calculate_diameters = 0  # don't calculate spot diameters
        device.CalcSpotsCentrDiaIntens(int(bool(self.dynamic_noise_cut)), calculate_diameters)
        device.CalcSpotToReferenceDeviations(int(bool(self.cancel_wavefront_tilt)))
        return device

    @property
    def zernike(self):
        """Zernike coefficients up to `zernike_order`, rms amplitude per order, and radius of curvature in mm."""
        device = self._calc_spot_deviations()
        coefficients = self._system.Array.CreateInstance(self._system.Single, MAX_ZERNIKE_MODES + 1)
        orders_rms = self._system.Array.CreateInstance(self._system.Single, MAX_ZERNIKE_MODES + 1)
        _, orders_calculated, roc_mm = device.ZernikeLsf(0, coefficients, orders_rms, 0.0)
        self._zernike_orders_calculated = int(orders_calculated)

        # Vendor arrays are indexed from 1
        coefficients = np.array(list(coefficients), dtype=np.float32)
        orders_rms = np.array(list(orders_rms), dtype=np.float32)
        modes = zernike_modes(self._zernike_order)
        return ZernikeResult(coefficients[1:modes + 1], orders_rms[1:self._zernike_order + 1], float(roc_mm))

    @zernike.setter
    def zernike(self, value):
        raise ReadOnlyPropertyError("zernike")

    @property
    def wavefront(self):
        """Statistics of the measured wavefront within the pupil, plus the wavefront map."""
        device = self._calc_spot_deviations()
        rows, columns = int(device.MaxSpotY), int(device.MaxSpotX)
        wavefront = self._system.Array.CreateInstance(self._system.Single, rows, columns)
        limit_to_pupil = 1
        device.CalcWavefront(WAVEFRONT_MEAS, limit_to_pupil, wavefront)

        _, w_min, w_max, w_diff, w_mean, w_rms, w_weighted_rms = device.CalcWavefrontStatistics(
            0.0, 0.0, 0.0, 0.0, 0.0, 0.0)
        wavefront_map = np.array(list(wavefront), dtype=np.float32).reshape((rows, columns))
        return WavefrontResult(w_min, w_max, w_diff, w_mean, w_rms, w_weighted_rms, wavefront_map)

    @wavefront.setter
    def wavefront(self, value):
        raise ReadOnlyPropertyError("wavefront")

    @property
    def fourier_optometric(self):
        """Fourier (M, J0, J45) and optometric (sphere, cylinder, axis) notations of the Zernike fit."""
        _ = self.zernike  # ZernikeLsf has to run before CalcFourierOptometric
        result = self.device.CalcFourierOptometric(self._zernike_orders_calculated, self._fourier_order,
                                                   0.0, 0.0, 0.0, 0.0, 0.0, 0.0)
        return FourierOptometric(*(float(v) for v in result[1:]))

    @fourier_optometric.setter
    def fourier_optometric(self, value):
        raise ReadOnlyPropertyError("fourier_optometric")

    def show_spotfield_image(self, ax=None, image=None):
        """Display the spotfield image (a new one unless `image` is given)."""
        if image is None:
            image = self.spotfield_image
        if ax is None:
            _, ax = plt.subplots()
        im = ax.imshow(image, cmap="gray")
        ax.set_aspect("equal")
        ax.set_title(f"{self.instrument_name} spotfield")
        return im


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    wfs = WavefrontSensor()
    wfs.connect()
    wfs.configure_device()
    wfs.set_reference_plane("internal")
    wfs.adjust_image_brightness()
    print(f"Exposure time: {wfs.exposure_time} s, gain: {wfs.master_gain}")
    wfs.set_averaging(10)
    wfs.pupil = (-0.5, -2.0, 1.1, 1.6)
    wfs.pupil = wfs.beam_centroid
    wfs.show_spotfield_image()
    wfs.zernike_order = 3
    print(wfs.zernike)
    print(wfs.wavefront[:6])
    print(wfs.fourier_optometric)
    wfs.disconnect()
    plt.show()
