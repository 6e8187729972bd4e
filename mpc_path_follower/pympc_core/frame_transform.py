"""
World <-> vehicle frame conversion for reference waypoints.

The vehicle frame has its origin at the vehicle position and its x-axis
along the heading.
"""

from typing import Tuple

import numpy as np

from .errors import InsufficientWaypoints


def _as_waypoints(wx, wy) -> Tuple[np.ndarray, np.ndarray]:
    wx = np.asarray(wx, dtype=np.float64).ravel()
    wy = np.asarray(wy, dtype=np.float64).ravel()
    if wx.shape != wy.shape:
        raise ValueError(
            f"Waypoint x/y lengths differ: {wx.size} vs {wy.size}")
    if wx.size == 0:
        raise InsufficientWaypoints(0, 1)
    return wx, wy


def world_to_vehicle(px: float, py: float, psi: float,
                     wx, wy) -> Tuple[np.ndarray, np.ndarray]:
    """Shift waypoints to the vehicle origin, then rotate by -psi."""
    wx, wy = _as_waypoints(wx, wy)
    dx = wx - px
    dy = wy - py
    cos_p = np.cos(-psi)
    sin_p = np.sin(-psi)
    local_x = dx * cos_p - dy * sin_p
    local_y = dx * sin_p + dy * cos_p
    return local_x, local_y


def vehicle_to_world(px: float, py: float, psi: float,
                     lx, ly) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse of world_to_vehicle: rotate by psi, then shift back."""
    lx, ly = _as_waypoints(lx, ly)
    cos_p = np.cos(psi)
    sin_p = np.sin(psi)
    wx = lx * cos_p - ly * sin_p + px
    wy = lx * sin_p + ly * cos_p + py
    return wx, wy
