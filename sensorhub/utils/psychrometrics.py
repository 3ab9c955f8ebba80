"""
Psychrometric Calculations
==========================

Pure utility functions for air-science derived metrics used in grow environments.

Functions:
- calculate_svp_kpa: Saturation vapor pressure (Tetens)
- calculate_actual_vapor_pressure_kpa: Vapor pressure of ambient air
- calculate_vpd_kpa: Vapor Pressure Deficit
- calculate_leaf_vpd_kpa: Leaf-to-air Vapor Pressure Deficit
- compute_derived_metrics: Values merged into sensor readings

These are stateless calculations suitable for:
- The reading pipeline (add derived metrics to sensor readings)
- Analytics (historical calculations over arrays)
"""
from __future__ import annotations

import math
from numbers import Number
from typing import Dict, Optional


def calculate_svp_kpa(temperature_c: float) -> float:
    """
    Calculate Saturation Vapor Pressure (SVP) in kPa using the Tetens formula.

    SVP = 0.6108 × exp(17.27 × T / (T + 237.3))

    Args:
        temperature_c: Temperature in Celsius

    Returns:
        Saturation vapor pressure in kPa
    """
    return 0.6108 * math.exp((17.27 * temperature_c) / (temperature_c + 237.3))


def calculate_actual_vapor_pressure_kpa(temperature_c: float, relative_humidity: float) -> float:
    """AVP = (RH / 100) × SVP(air temperature)."""
    return (relative_humidity / 100.0) * calculate_svp_kpa(temperature_c)


def calculate_vpd_kpa(temperature_c, relative_humidity):
    """
    Calculate Vapor Pressure Deficit (VPD) in kPa.

    VPD = SVP(T) - AVP

    Optimal VPD ranges for plants:
    - Seedlings/clones: 0.4-0.8 kPa
    - Vegetative: 0.8-1.2 kPa
    - Flowering: 1.0-1.5 kPa

    Args:
        temperature_c: Temperature in Celsius (scalar or array-like)
        relative_humidity: Relative humidity percentage (0-100)

    Returns:
        VPD in kPa, or None if inputs are None
    """
    if temperature_c is None or relative_humidity is None:
        return None

    if isinstance(temperature_c, Number) and isinstance(relative_humidity, Number):
        temp_c = float(temperature_c)
        svp = calculate_svp_kpa(temp_c)
        return svp - calculate_actual_vapor_pressure_kpa(temp_c, float(relative_humidity))

    # Vectorized path for historical arrays
    import numpy as np

    temp = np.asarray(temperature_c, dtype=float)
    humidity = np.asarray(relative_humidity, dtype=float)
    svp = 0.6108 * np.exp((17.27 * temp) / (temp + 237.3))
    return svp - (humidity / 100.0) * svp


def calculate_leaf_vpd_kpa(
    air_temperature_c: Optional[float],
    relative_humidity: Optional[float],
    leaf_temperature_c: Optional[float],
) -> Optional[float]:
    """
    Calculate leaf VPD in kPa.

    The saturation term uses the leaf temperature while the actual vapor
    pressure still comes from the ambient air:

        leafVPD = SVP(T_leaf) - (RH / 100) × SVP(T_air)

    Returns None when any input is missing.
    """
    if air_temperature_c is None or relative_humidity is None or leaf_temperature_c is None:
        return None
    avp = calculate_actual_vapor_pressure_kpa(float(air_temperature_c), float(relative_humidity))
    return calculate_svp_kpa(float(leaf_temperature_c)) - avp


def compute_derived_metrics(
    air_temperature_c: Optional[float],
    relative_humidity: Optional[float],
    leaf_temperature_c: Optional[float] = None,
) -> Dict[str, float]:
    """
    Compute derived metrics to merge into a reading's ``values``.

    Args:
        air_temperature_c: Ambient air temperature in Celsius
        relative_humidity: Relative humidity percentage (0-100)
        leaf_temperature_c: Optional leaf/canopy temperature in Celsius

    Returns:
        Dictionary with ``vpd`` and, when a leaf temperature is supplied,
        ``leaf_vpd``. Metrics whose inputs are missing are omitted.
    """
    metrics: Dict[str, float] = {}
    vpd = calculate_vpd_kpa(air_temperature_c, relative_humidity)
    if vpd is not None:
        metrics["vpd"] = round(float(vpd), 4)
    leaf_vpd = calculate_leaf_vpd_kpa(air_temperature_c, relative_humidity, leaf_temperature_c)
    if leaf_vpd is not None:
        metrics["leaf_vpd"] = round(leaf_vpd, 4)
    return metrics
