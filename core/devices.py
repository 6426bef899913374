"""
Device discovery through `adb devices -l`.
"""
import logging
import subprocess
from typing import List

from .config import ADB_BINARY, DEVICE_QUERY_TIMEOUT
from .models import DeviceInfo, DeviceMode

logger = logging.getLogger(__name__)

_MODES = {mode.value: mode for mode in DeviceMode}


def parse_devices(text: str) -> List[DeviceInfo]:
    """Parse the output of `adb devices -l`."""
    devices: List[DeviceInfo] = []
    for line in text.strip().split('\n'):
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue

        info = DeviceInfo(serial=parts[0], mode=_MODES.get(parts[1], DeviceMode.UNKNOWN))

        # Parse additional info
        for part in parts[2:]:
            if ':' in part:
                key, val = part.split(':', 1)
                if key == "product":
                    info.product = val
                elif key == "model":
                    info.model = val
                elif key == "device":
                    info.device = val
                elif key == "transport_id":
                    info.transport_id = val

        devices.append(info)
    return devices


def list_devices(adb: str = ADB_BINARY) -> List[DeviceInfo]:
    """Devices known to adb. A missing or hanging adb gives an empty list."""
    try:
        result = subprocess.run(
            [adb, "devices", "-l"],
            capture_output=True, text=True, timeout=DEVICE_QUERY_TIMEOUT
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Could not list devices with %s: %s", adb, e)
        return []
    if result.returncode != 0:
        logger.warning("adb devices failed (rc=%s): %s", result.returncode, result.stderr.strip())
        return []
    return parse_devices(result.stdout)


def has_online_device(adb: str = ADB_BINARY) -> bool:
    return any(d.mode == DeviceMode.ONLINE for d in list_devices(adb))


def format_devices(devices: List[DeviceInfo]) -> str:
    if not devices:
        return "STATUS: NO_DEVICES\nNo devices found.\nAction: Start an emulator (restart_emulator) or connect a device."

    lines = [f"STATUS: FOUND_{len(devices)}_DEVICE(S)", ""]
    for d in devices:
        status_str = f"  {d.serial}: {d.mode.value.upper()}"
        if d.model:
            status_str += f" ({d.model})"
        if d.mode == DeviceMode.UNAUTHORIZED:
            status_str += " - Accept USB debugging prompt on device"
        elif d.mode == DeviceMode.OFFLINE:
            status_str += " - Reconnect device"
        lines.append(status_str)
    return '\n'.join(lines)
