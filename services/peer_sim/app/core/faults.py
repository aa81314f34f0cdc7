from __future__ import annotations
from dataclasses import dataclass
import random

@dataclass
class FaultConfig:
    delay_ms: int = 0           # hold each UDP reply this long
    drop_rate: float = 0.0      # 0.0..1.0, chance a datagram is ignored

    def reset(self) -> None:
        self.delay_ms = 0
        self.drop_rate = 0.0

    def delay_s(self) -> float:
        return self.delay_ms / 1000.0

    def should_drop(self) -> bool:
        return self.drop_rate > 0 and random.random() < self.drop_rate
