"""
Exponential moving average over the raw deviation stream.
"""

from config import SMOOTHING_FACTOR_MAX, SMOOTHING_FACTOR_MIN


class DeviationSmoother:
    """
    EMA filter: smoothed = k * previous + (1 - k) * raw.

    k = 0 passes raw values straight through; larger k is steadier but lags.
    Changing k keeps the accumulated value and only affects later samples.
    """

    def __init__(self, factor: float = 0.5):
        self._factor = self._validate(factor)
        self.value = 0.0
        self.last_raw = 0.0

    @staticmethod
    def _validate(factor: float) -> float:
        factor = float(factor)
        if not SMOOTHING_FACTOR_MIN <= factor <= SMOOTHING_FACTOR_MAX:
            raise ValueError(
                f"smoothing factor must be in [{SMOOTHING_FACTOR_MIN}, {SMOOTHING_FACTOR_MAX}], got {factor}"
            )
        return factor

    @property
    def factor(self) -> float:
        return self._factor

    @factor.setter
    def factor(self, value: float):
        self._factor = self._validate(value)

    def update(self, raw: float) -> float:
        """Feed one raw deviation and return the new smoothed value."""
        self.last_raw = raw
        self.value = self._factor * self.value + (1 - self._factor) * raw
        return self.value

    def reset(self):
        self.value = 0.0
        self.last_raw = 0.0
