from __future__ import annotations

from dataclasses import dataclass


class GenerationCounter:
    """Monotonic render generation; only the latest token is current."""

    def __init__(self) -> None:
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def advance(self) -> "RenderToken":
        self._value += 1
        return RenderToken(self, self._value)

    def token(self) -> "RenderToken":
        return RenderToken(self, self._value)


@dataclass(frozen=True)
class RenderToken:
    counter: GenerationCounter
    generation: int

    def is_current(self) -> bool:
        return self.generation == self.counter.value


__all__ = ["GenerationCounter", "RenderToken"]
