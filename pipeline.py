from __future__ import annotations
from typing import List, Sequence

from lexer import IntcodeError
from interpreter import Machine


class IntcodePipelineError(IntcodeError):
    pass


class FeedbackLoop:
    """Round-robin scheduler for a ring of independent machines.

    Each turn a live machine receives the upstream signal through
    ``run_with_input`` and its last emitted value becomes the signal for the
    next machine; the last machine feeds the first. The machines never see
    each other.
    """

    def __init__(self, machines: Sequence[Machine]) -> None:
        if not machines:
            raise IntcodePipelineError("A feedback loop needs at least one machine")
        self.machines: List[Machine] = list(machines)
        self.halted: List[bool] = [m.halted for m in self.machines]
        self.rounds = 0

    @classmethod
    def from_image(cls, image: Sequence[int], count: int) -> "FeedbackLoop":
        base = Machine(image)
        return cls([base.copy() for _ in range(count)])

    @property
    def done(self) -> bool:
        return all(self.halted)

    def prime(self, settings: Sequence[int]) -> None:
        """Give each machine its one-off setting value (e.g. an amplifier phase)."""
        if len(settings) != len(self.machines):
            raise IntcodePipelineError(
                f"Expected {len(self.machines)} settings but got {len(settings)}"
            )
        for index, (machine, setting) in enumerate(zip(self.machines, settings)):
            outputs: List[int] = []
            self.halted[index] = machine.run_with_input(setting, outputs.append)
            if outputs:
                raise IntcodePipelineError(f"Machine {index} produced output while being primed")

    def run(self, signal: int = 0) -> int:
        while not self.done:
            signal = self.run_round(signal)
        return signal

    def run_round(self, signal: int) -> int:
        for index, machine in enumerate(self.machines):
            if self.halted[index]:
                continue
            outputs: List[int] = []
            self.halted[index] = machine.run_with_input(signal, outputs.append)
            if not outputs:
                raise IntcodePipelineError(f"Machine {index} produced no output in round {self.rounds}")
            signal = outputs[-1]
        self.rounds += 1
        return signal
