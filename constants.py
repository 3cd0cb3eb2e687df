# DLL locations
# Updated on 10/18/2026
import os

KINESIS_PATH = os.environ.get("THORLABS_KINESIS_PATH", r"C:\Program Files\Thorlabs\Kinesis")
WFS_DLL_PATH = os.environ.get("THORLABS_WFS_DLL_PATH", r"C:\Program Files (x86)\Microsoft.NET\Primary Interop Assemblies")
TL4000_DLL_PATH = os.environ.get("THORLABS_TL4000_DLL_PATH", r"C:\Program Files\IVI Foundation\VISA\VisaCom64\Primary Interop Assemblies")

# Kinesis assemblies
DEVICE_MANAGER_DLL = "Thorlabs.MotionControl.DeviceManagerCLI.dll"
GENERIC_MOTOR_DLL = "Thorlabs.MotionControl.GenericMotorCLI.dll"
SOLENOID_DLL = "Thorlabs.MotionControl.KCube.SolenoidCLI.dll"
FLIPPER_DLL = "Thorlabs.MotionControl.FilterFlipperCLI.dll"

# Kinesis session parameters
POLLING_MS = 250  # in ms
SETTINGS_TIMEOUT_MS = 5000  # in ms, wait for settings to initialize

# KSC101 status bits
SOLENOID_OUTPUT_BIT = 0x0001
SOLENOID_INTERLOCK_BIT = 0x2000

# Shutter operating modes/states, ordered as the vendor enums
SHUTTER_MODES = ("Manual", "SingleToggle", "AutoToggle", "Triggered")
SHUTTER_STATES = ("Inactive", "Active")

# Flipper positions
FLIPPER_POSITIONS = (1, 2)

# Wavefront sensor interop
WFS_DLL = "Thorlabs.WFS.Interop64.dll"
WFS_NAMESPACE = "Thorlabs.WFS.Interop64"
WFS_RESOURCE_FORMAT = "USB::0x1313::0x0000::{}"

PIXEL_FORMAT_MONO8 = 0
PIXEL_FORMAT_MONO16 = 1

# WFS30 resolution presets
# 0 1936x1216, 1 1216x1216, 2 1024x1024, 3 768x768, 4 512x512, 5 360x360,
# 6 968x608, 7 608x608, 8 512x512, 9 384x384, 10 256x256, 11 180x180 (6-11 subsampling 2x2)
CAM_RES_WFS30_1936 = 0
CAM_RES_WFS30_MAX_IDX = 11
# WFS20 resolution presets
# 0 1440x1080, 1 1080x1080, 2 768x768, 3 512x512, 4 360x360,
# 5 720x540, 6 540x540, 7 384x384, 8 256x256, 9 180x180 (5-9 binning 2x2)
CAM_RES_WFS20_1440 = 0
CAM_RES_WFS20_MAX_IDX = 9

WFS_REF_INTERNAL = 0
WFS_REF_USER = 1
REFERENCE_PLANES = ("internal", "user")

PUPIL_CTR_MIN_MM = -8.0
PUPIL_CTR_MAX_MM = 8.0
PUPIL_DIA_MIN_MM = 0.5  # coarse check only
PUPIL_DIA_MAX_MM = 12.0

BLACK_LEVEL_MIN = 0
BLACK_LEVEL_MAX = 255
AVERAGING_MIN = 0
AVERAGING_MAX = 100

ZERNIKE_ORDER_MIN = 2
ZERNIKE_ORDER_MAX = 10
ZERNIKE_ORDER_DEFAULT = 4
MAX_ZERNIKE_MODES = 66  # vendor indices run 1..66
FOURIER_ORDERS = (2, 4, 6)
FOURIER_ORDER_DEFAULT = 2

TRIGGER_MODES = ("continuous", "low", "high", "software")

WAVEFRONT_MEAS = 0
AUTO_EXPOSURE_ATTEMPTS = 10

# Laser diode driver interop
TL4000_DLL = "Thorlabs.TL4000_64.dll"
TL4000_NAMESPACE = "Thorlabs.TL4000_64"
LDD_DEFAULT_RESOURCE = "USB::4883::32847::M00869857::INSTR"
THORLABS_USB_VID = 0x1313
LDD_USB_PIDS = (0x804A, 0x804B, 0x804C, 0x804D, 0x804E, 0x804F)  # ITC4000 series, CLD1015

# Logging
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
