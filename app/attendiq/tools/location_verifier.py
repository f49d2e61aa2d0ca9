# app/attendiq/tools/location_verifier.py
"""
Geofence plausibility checks.

This is a plausibility filter against honest GPS error, not proof of
presence: coordinates come from the client and can be spoofed. The tolerance
bounds are policy knobs, not a security boundary.
"""

import math
from typing import Optional

from ..config.config import settings

EARTH_RADIUS_METERS = 6371e3


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates in meters (haversine)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


class StrictRadiusPolicy:
    """distance <= radius, no GPS allowance."""

    def tolerance(self, radius_meters: float, is_android: bool = False) -> float:
        return 0.0


class AdditiveTolerancePolicy:
    """
    radius + base + ratio * radius, with a larger allowance for Android
    devices whose GPS fixes are noisier indoors.
    """

    def __init__(
        self,
        base_meters: Optional[float] = None,
        radius_ratio: Optional[float] = None,
        android_base_meters: Optional[float] = None,
        android_radius_ratio: Optional[float] = None,
    ):
        if base_meters is None:
            base_meters = settings.GPS_BASE_TOLERANCE_METERS
        if radius_ratio is None:
            radius_ratio = settings.GPS_RADIUS_TOLERANCE_RATIO
        if android_base_meters is None:
            android_base_meters = settings.ANDROID_GPS_BASE_TOLERANCE_METERS
        if android_radius_ratio is None:
            android_radius_ratio = settings.ANDROID_GPS_RADIUS_TOLERANCE_RATIO
        self.base_meters = base_meters
        self.radius_ratio = radius_ratio
        # The Android allowance never drops below the default one.
        self.android_base_meters = max(android_base_meters, base_meters)
        self.android_radius_ratio = max(android_radius_ratio, radius_ratio)

    def tolerance(self, radius_meters: float, is_android: bool = False) -> float:
        if is_android:
            return self.android_base_meters + self.android_radius_ratio * radius_meters
        return self.base_meters + self.radius_ratio * radius_meters


def get_location_policy(name: Optional[str] = None):
    """Returns the configured tolerance policy ('tolerant' or 'strict')."""
    name = (name or settings.LOCATION_POLICY or "tolerant").lower()
    if name == "strict":
        return StrictRadiusPolicy()
    return AdditiveTolerancePolicy()


def _is_missing(value: Optional[float]) -> bool:
    return value is None or value == 0 or math.isnan(value)


def is_within_radius(
    student_lat: Optional[float],
    student_lng: Optional[float],
    center_lat: Optional[float],
    center_lng: Optional[float],
    radius_meters: float,
    is_android: bool = False,
    policy=None,
) -> bool:
    """
    Decides whether the student is close enough to the class center.

    Args:
        student_lat, student_lng: Submitted coordinates.
        center_lat, center_lng: Geofence center of the class.
        radius_meters (float): Nominal geofence radius.
        is_android (bool): Device hint selecting the wider GPS allowance.
        policy: Tolerance policy; defaults to the configured one.

    Returns:
        bool: False when any coordinate is missing or zero, otherwise whether
        the distance fits inside radius plus tolerance.
    """
    if any(_is_missing(v) for v in (student_lat, student_lng, center_lat, center_lng)):
        return False

    policy = policy or get_location_policy()
    distance = calculate_distance(student_lat, student_lng, center_lat, center_lng)
    return distance <= radius_meters + policy.tolerance(radius_meters, is_android)


def describe_distance(distance_meters: float, radius_meters: float) -> str:
    """User-facing summary of how far the student is from class."""
    if distance_meters <= radius_meters:
        return f"Location verified ({round(distance_meters)}m from class)"
    return f"Too far from class ({round(distance_meters)}m, max {round(radius_meters)}m)"
