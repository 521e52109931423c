# hrvxo/control/movement.py
from __future__ import annotations
import math
from collections import deque
from dataclasses import dataclass
from typing import Iterable

@dataclass
class MovementRules:
    # linear acceleration at rest is ~0.0-0.1 m/s^2, fidgeting ~0.3-0.5, walking > 1.0
    threshold: float = 0.5
    # ~2 s of samples at a 200 ms sensor rate
    window_size: int = 10
    # a single spike (notification buzz) must not flag movement
    min_samples: int = 3

def is_moving(magnitudes: Iterable[float], rules: MovementRules | None = None) -> bool:
    """Mean magnitude over the window above threshold, with enough samples."""
    rules = rules or MovementRules()
    vals = [float(m) for m in magnitudes][-rules.window_size:]
    if len(vals) < rules.min_samples:
        return False
    return sum(vals) / len(vals) > rules.threshold

class MovementGate:
    def __init__(self, rules: MovementRules | None = None):
        self.rules = rules or MovementRules()
        self._window = deque(maxlen=self.rules.window_size)
        self.moving = False

    def update(self, x: float, y: float, z: float) -> bool:
        """Feed one linear-acceleration sample (m/s^2); returns the current state."""
        return self.update_magnitude(math.sqrt(x * x + y * y + z * z))

    def update_magnitude(self, magnitude: float) -> bool:
        self._window.append(float(magnitude))
        self.moving = is_moving(self._window, self.rules)
        return self.moving

    def reset(self) -> None:
        self._window.clear()
        self.moving = False
