"""
Analytical percentile bands for log-normal balance projections.

The deterministic projection is treated as the mean of a log-normal
distribution whose log-volatility after t years is sigma * sqrt(t). Each
percentile is mean * exp(z * s - s^2 / 2), which keeps p10 < p25 < p50 <
p75 < p90 for every s > 0.

Negative balances (debts) are mirrored: the band is computed on the
magnitude with the z-score flipped, so p10 is still the pessimistic band
(more debt) and p90 the optimistic one. Bands are never clamped at zero.
"""

from typing import Dict

import numpy as np
from numpy.typing import ArrayLike, NDArray

Z_P10 = -1.2816
Z_P25 = -0.6745
Z_P50 = 0.0
Z_P75 = 0.6745
Z_P90 = 1.2816

Z_SCORES: Dict[str, float] = {
    "p10": Z_P10,
    "p25": Z_P25,
    "p50": Z_P50,
    "p75": Z_P75,
    "p90": Z_P90,
}


def horizon_sigma(volatility: float, months: ArrayLike) -> NDArray[np.float64]:
    """Log-volatility after ``months`` months for an annual volatility."""
    return volatility * np.sqrt(np.asarray(months, dtype=np.float64) / 12.0)


def percentile_bands(
    values: ArrayLike, sigmas: ArrayLike
) -> Dict[str, NDArray[np.float64]]:
    """
    Compute p10..p90 bands around expected values.

    Args:
        values: Expected (deterministic) balances
        sigmas: Log-volatility for each value (same shape as values)

    Returns:
        Dict mapping band name to an array of unrounded values; rounding to
        cents would collapse neighbouring bands for small balances
    """
    values = np.asarray(values, dtype=np.float64)
    sigmas = np.asarray(sigmas, dtype=np.float64)

    negative = values < 0
    sign = np.where(negative, -1.0, 1.0)
    magnitude = np.abs(values)
    drift = -0.5 * sigmas**2

    bands = {}
    for name, z in Z_SCORES.items():
        oriented_z = np.where(negative, -z, z)
        bands[name] = sign * magnitude * np.exp(oriented_z * sigmas + drift)
    return bands


def calculate_percentiles_for_value(value: float, sigma: float) -> Dict[str, float]:
    """Scalar convenience wrapper around :func:`percentile_bands`."""
    bands = percentile_bands([value], [sigma])
    return {name: float(band[0]) for name, band in bands.items()}
