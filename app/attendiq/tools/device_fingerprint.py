# app/attendiq/tools/device_fingerprint.py

import hashlib
import json
from typing import Optional

from pydantic import BaseModel

# Only these fields identify a device. Battery, charging state and SSID change
# from one class meeting to the next and are never hashed.
IDENTITY_FIELDS = (
    "device_model",
    "os_version",
    "user_agent",
    "screen_resolution",
    "timezone",
    "language",
)

# Serialized key names, kept stable so hashes match the ones already stored.
_CANONICAL_KEYS = {
    "device_model": "deviceModel",
    "os_version": "osVersion",
    "user_agent": "userAgent",
    "screen_resolution": "screenResolution",
    "timezone": "timezone",
    "language": "language",
}


class DeviceAttributes(BaseModel):
    """Device and browser signals submitted with a clock-in."""
    device_model: Optional[str] = None
    os_version: Optional[str] = None
    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    battery_level: Optional[float] = None
    is_charging: Optional[bool] = None
    network_ssid: Optional[str] = None


def generate_device_fingerprint(attributes: DeviceAttributes) -> str:
    """
    Derives a stable SHA-256 identity for the submitting device.

    Missing identity fields are normalized to the literal "unknown" before
    hashing, so identical attribute sets always produce the same fingerprint.

    Args:
        attributes (DeviceAttributes): The submitted device signals.

    Returns:
        str: Hex-encoded SHA-256 digest.
    """
    fingerprint_data = {
        _CANONICAL_KEYS[field]: getattr(attributes, field) or "unknown"
        for field in IDENTITY_FIELDS
    }
    fingerprint_string = json.dumps(fingerprint_data, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(fingerprint_string.encode("utf-8")).hexdigest()


def is_android_device(attributes: Optional[DeviceAttributes]) -> bool:
    """True when any identity signal names Android; used as the GPS tolerance hint."""
    if attributes is None:
        return False
    haystack = " ".join(
        value for value in (attributes.user_agent, attributes.os_version, attributes.device_model) if value
    )
    return "android" in haystack.lower()
