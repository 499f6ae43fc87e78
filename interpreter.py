from __future__ import annotations
import json
import operator
import numpy as np
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO, Tuple, Union
from numpy.typing import NDArray

from lexer import IntcodeError, IntcodeParseError, parse_int
from extensions import HookRegistry, RuntimeServices, StepContext, build_default_services
from parser import read_program, read_program_file


MODE_POSITION = 0
MODE_IMMEDIATE = 1
MODE_RELATIVE = 2

OP_ADD = 1
OP_MUL = 2
OP_INPUT = 3
OP_OUTPUT = 4
OP_JUMP_IF_TRUE = 5
OP_JUMP_IF_FALSE = 6
OP_LESS_THAN = 7
OP_EQUALS = 8
OP_ADJUST_BASE = 9
OP_HALT = 99

# opcode -> (mnemonic, parameter count)
OPCODES: Dict[int, Tuple[str, int]] = {
    OP_ADD: ("add", 3),
    OP_MUL: ("mul", 3),
    OP_INPUT: ("in", 1),
    OP_OUTPUT: ("out", 1),
    OP_JUMP_IF_TRUE: ("jt", 2),
    OP_JUMP_IF_FALSE: ("jf", 2),
    OP_LESS_THAN: ("lt", 3),
    OP_EQUALS: ("eq", 3),
    OP_ADJUST_BASE: ("arb", 1),
    OP_HALT: ("halt", 0),
}

BINARY_OPS: Dict[int, Callable[[int, int], int]] = {
    OP_ADD: operator.add,
    OP_MUL: operator.mul,
    OP_LESS_THAN: lambda a, b: 1 if a < b else 0,
    OP_EQUALS: lambda a, b: 1 if a == b else 0,
}

STATE_RUNNING = "RUNNING"
STATE_BLOCKED = "BLOCKED"
STATE_HALTED = "HALTED"
STATE_FAULTED = "FAULTED"

# Grown memory never shrinks; start with room for small images.
MIN_CAPACITY = 64


class IntcodeRuntimeError(IntcodeError):
    """Raised for execution faults."""

    def __init__(
        self,
        message: str,
        *,
        address: Optional[int] = None,
        opcode: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.address = address
        self.opcode = opcode
        self.step_index: Optional[int] = None

    def __str__(self) -> str:
        if self.address is None:
            return self.message
        if self.opcode is None:
            return f"{self.message} (at address {self.address})"
        return f"{self.message} (opcode {self.opcode} at address {self.address})"


class IntcodeDecodeError(IntcodeRuntimeError):
    """Unknown opcode or parameter mode."""


class IntcodeAddressError(IntcodeRuntimeError):
    """A resolved address is negative."""


class IntcodeIOError(IntcodeRuntimeError):
    """The input stream or output sink failed."""


class Memory:
    """Zero-filled, growable store of integers.

    Cells live in a numpy object array so values keep exact Python integer
    semantics. ``_length`` is the logical extent (loaded or written); every
    cell at or past it is zero.
    """

    def __init__(self, image: Sequence[int] = ()) -> None:
        length = len(image)
        self.cells: NDArray[Any] = np.zeros(max(length, MIN_CAPACITY), dtype=object)
        if length:
            self.cells[:length] = np.array([int(word) for word in image], dtype=object)
        self._length = length

    def __len__(self) -> int:
        return self._length

    def read(self, address: int) -> int:
        if address < 0:
            raise IntcodeAddressError(f"Cannot read negative address {address}")
        if address >= self._length:
            return 0
        return self.cells[address]

    def write(self, address: int, value: int) -> None:
        if address < 0:
            raise IntcodeAddressError(f"Cannot write negative address {address}")
        capacity = self.cells.size
        if address >= capacity:
            grown = max(address + 1, capacity * 2)
            self.cells = np.concatenate((self.cells, np.zeros(grown - capacity, dtype=object)))
        self.cells[address] = value
        if address >= self._length:
            self._length = address + 1

    def snapshot(self) -> List[int]:
        return self.cells[: self._length].tolist()

    def copy(self) -> "Memory":
        clone = Memory()
        clone.cells = self.cells.copy()
        clone._length = self._length
        return clone


class ParamModes:
    """Yields parameter modes one decimal digit at a time, lowest first."""

    def __init__(self, selector: int) -> None:
        self.selector = selector

    def next(self) -> int:
        mode = self.selector % 10
        self.selector //= 10
        if mode not in (MODE_POSITION, MODE_IMMEDIATE, MODE_RELATIVE):
            raise IntcodeDecodeError(f"Unknown parameter mode {mode}")
        return mode


def decode(word: int) -> Tuple[int, ParamModes]:
    if word < 0:
        raise IntcodeDecodeError(f"Malformed instruction word {word}")
    opcode = word % 100
    if opcode not in OPCODES:
        raise IntcodeDecodeError(f"Unknown opcode {opcode}", opcode=opcode)
    return opcode, ParamModes(word // 100)


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    address: int
    opcode: int
    instruction: List[int]
    relative_base: int


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0

    def record(
        self,
        *,
        address: int,
        opcode: int,
        instruction: List[int],
        relative_base: int,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            address=address,
            opcode=opcode,
            instruction=instruction,
            relative_base=relative_base,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    def tail(self, count: int) -> List[StateEntry]:
        return self.entries[-count:] if count > 0 else []


InputReader = Callable[[], Optional[int]]
Emitter = Callable[[int], None]
Sink = Union[TextIO, Callable[[int], None], None]


def _discard(_: int) -> None:
    return None


def make_emitter(sink: Sink) -> Emitter:
    """Adapt an output sink: text streams get one line per value, callables get the int."""
    if sink is None:
        return _discard
    write = getattr(sink, "write", None)
    if write is not None:
        def emit(value: int) -> None:
            write(f"{value}\n")
        return emit
    if callable(sink):
        return sink
    raise TypeError(f"Output sink must be writable or callable, got {type(sink).__name__}")


def make_stream_reader(stream: Optional[TextIO]) -> InputReader:
    def read_input() -> int:
        if stream is None:
            raise IntcodeIOError("Input requested but no input stream was supplied")
        try:
            line = stream.readline()
        except OSError as exc:
            raise IntcodeIOError(f"Failed to read input: {exc}") from exc
        if isinstance(line, bytes):
            try:
                line = line.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise IntcodeParseError(f"Invalid input encoding: {exc}") from exc
        if line == "":
            raise IntcodeIOError("Input stream exhausted")
        return parse_int(line)

    return read_input


class Machine:
    def __init__(
        self,
        image: Sequence[int],
        *,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
    ) -> None:
        self._memory = Memory(image)
        self.ip = 0
        self.relative_base = 0
        self.state = STATE_RUNNING
        self.error: Optional[IntcodeError] = None
        self.steps = 0
        self.verbose = verbose
        self.services = services or build_default_services()
        self.hook_registry: HookRegistry = self.services.hook_registry
        # Full step and I/O history is only kept in verbose mode.
        self.logger = StateLogger(verbose=verbose)
        self.io_log: List[Dict[str, Any]] = []

    @classmethod
    def from_source(cls, text: str, **kwargs: Any) -> "Machine":
        return cls(read_program(text), **kwargs)

    @classmethod
    def from_file(cls, path: str, **kwargs: Any) -> "Machine":
        return cls(read_program_file(path), **kwargs)

    @property
    def halted(self) -> bool:
        return self.state == STATE_HALTED

    def memory(self) -> List[int]:
        return self._memory.snapshot()

    def peek(self, address: int) -> int:
        return self._memory.read(address)

    def poke(self, address: int, value: int) -> None:
        self._memory.write(address, int(value))

    def copy(self) -> "Machine":
        clone = Machine((), verbose=self.verbose, services=self.services)
        clone._memory = self._memory.copy()
        clone.ip = self.ip
        clone.relative_base = self.relative_base
        clone.state = self.state
        clone.error = self.error
        clone.steps = self.steps
        clone.logger.entries = list(self.logger.entries)
        clone.logger.next_state_index = self.logger.next_state_index
        clone.io_log = list(self.io_log)
        return clone

    # ---- run disciplines ----

    def run(self, input_stream: Optional[TextIO] = None, output_sink: Sink = None) -> None:
        """Execute until halt, reading one line per input instruction."""
        self._drive(make_stream_reader(input_stream), make_emitter(output_sink))

    def run_with_input(self, value: int, output_sink: Sink = None) -> bool:
        """Serve ``value`` to the next input instruction and run until a second
        input is requested (returns False) or the program halts (returns True).

        When suspended, the pending input instruction is left unexecuted so the
        next call resumes exactly there.
        """
        pending = [int(value)]

        def read_input() -> Optional[int]:
            return pending.pop() if pending else None

        return self._drive(read_input, make_emitter(output_sink)) == STATE_HALTED

    def run_until_input(self, output_sink: Sink = None) -> bool:
        """Run until the program first asks for input (returns False) or halts
        (returns True), without consuming a value."""
        return self._drive(lambda: None, make_emitter(output_sink)) == STATE_HALTED

    def step(self, input_stream: Optional[TextIO] = None, output_sink: Sink = None) -> str:
        """Execute a single instruction and return the resulting state."""
        return self._drive(make_stream_reader(input_stream), make_emitter(output_sink), single=True)

    def _drive(self, read_input: InputReader, emit: Emitter, *, single: bool = False) -> str:
        self._check_usable()
        if self.state == STATE_HALTED:
            return self.state
        self.state = STATE_RUNNING
        execute = self._execute
        try:
            if single:
                execute(read_input, emit)
            else:
                self._emit_event("run_start", self)
                while self.state == STATE_RUNNING:
                    execute(read_input, emit)
        except IntcodeError as error:
            self._fault(error)
            raise
        except Exception as exc:
            # Caller-supplied sinks may raise anything.
            raise self._fault_internal(exc) from exc
        return self.state

    def _check_usable(self) -> None:
        if self.state == STATE_FAULTED:
            raise IntcodeRuntimeError(
                f"Machine faulted earlier and cannot be resumed: {self.error}",
                address=self.ip,
            )

    def _fault(self, error: IntcodeError) -> None:
        self.state = STATE_FAULTED
        self.error = error
        if isinstance(error, IntcodeRuntimeError):
            if error.address is None:
                error.address = self.ip
            if error.opcode is None:
                word = self._memory.read(self.ip)
                if word >= 0 and word % 100 in OPCODES:
                    error.opcode = word % 100
            error.step_index = self.steps
        self._emit_event("on_error", self, error)

    def _fault_internal(self, exc: Exception) -> IntcodeRuntimeError:
        wrapped = IntcodeRuntimeError(f"Internal interpreter error: {exc}")
        self._fault(wrapped)
        return wrapped

    # ---- instruction execution ----

    def _execute(self, read_input: InputReader, emit: Emitter) -> None:
        memory = self._memory
        ip = self.ip
        opcode, modes = decode(memory.read(ip))
        # Input announces itself only once a value is available.
        if opcode != OP_INPUT and self.hook_registry.has_handlers("before_step"):
            self._emit_event("before_step", self, ip, opcode)

        binop = BINARY_OPS.get(opcode)
        if binop is not None:
            a = self._read_param(ip + 1, modes.next())
            b = self._read_param(ip + 2, modes.next())
            dst = self._write_address(ip + 3, modes.next())
            self._log_step(ip, opcode)
            memory.write(dst, binop(a, b))
            self.ip = ip + 4
        elif opcode == OP_INPUT:
            dst = self._write_address(ip + 1, modes.next())
            value = read_input()
            if value is None:
                # Suspend before the instruction: nothing has been changed.
                self.state = STATE_BLOCKED
                self._emit_event("suspend", self)
                return
            if self.hook_registry.has_handlers("before_step"):
                self._emit_event("before_step", self, ip, opcode)
            self._log_step(ip, opcode)
            memory.write(dst, value)
            self.ip = ip + 2
            if self.verbose:
                self.io_log.append({"event": "INPUT", "value": value})
            self._emit_event("input", self, value)
        elif opcode == OP_OUTPUT:
            value = self._read_param(ip + 1, modes.next())
            self._log_step(ip, opcode)
            self.ip = ip + 2
            if self.verbose:
                self.io_log.append({"event": "OUTPUT", "value": value})
            try:
                emit(value)
            except OSError as exc:
                raise IntcodeIOError(f"Failed to write output: {exc}", address=ip, opcode=opcode) from exc
            self._emit_event("output", self, value)
        elif opcode == OP_JUMP_IF_TRUE or opcode == OP_JUMP_IF_FALSE:
            cond = self._read_param(ip + 1, modes.next())
            target = self._read_param(ip + 2, modes.next())
            self._log_step(ip, opcode)
            if (cond != 0) == (opcode == OP_JUMP_IF_TRUE):
                if target < 0:
                    raise IntcodeAddressError(f"Jump to negative address {target}", address=ip, opcode=opcode)
                self.ip = target
            else:
                self.ip = ip + 3
        elif opcode == OP_ADJUST_BASE:
            self.relative_base += self._read_param(ip + 1, modes.next())
            self._log_step(ip, opcode)
            self.ip = ip + 2
        else:
            self._log_step(ip, opcode)
            self.state = STATE_HALTED
            self._emit_event("halt", self)

    def _read_param(self, address: int, mode: int) -> int:
        value = self._memory.read(address)
        if mode == MODE_IMMEDIATE:
            return value
        if mode == MODE_RELATIVE:
            return self._memory.read(self.relative_base + value)
        return self._memory.read(value)

    def _write_address(self, address: int, mode: int) -> int:
        value = self._memory.read(address)
        if mode == MODE_IMMEDIATE:
            raise IntcodeDecodeError("Immediate mode is not valid for a write target")
        if mode == MODE_RELATIVE:
            value += self.relative_base
        if value < 0:
            raise IntcodeAddressError(f"Write target resolves to negative address {value}")
        return value

    def _log_step(self, ip: int, opcode: int) -> None:
        # Recorded before the instruction's effects so the logged relative
        # base is the one its operands were resolved against.
        step_index = self.steps
        self.steps += 1
        if self.verbose:
            arity = OPCODES[opcode][1]
            self.logger.record(
                address=ip,
                opcode=opcode,
                instruction=[self._memory.read(ip + i) for i in range(arity + 1)],
                relative_base=self.relative_base,
            )
        if self.hook_registry.has_step_rules:
            try:
                self.hook_registry.after_step(
                    self,
                    StepContext(step_index=step_index, address=ip, opcode=opcode, relative_base=self.relative_base),
                )
            except IntcodeError:
                raise
            except Exception as exc:
                raise IntcodeRuntimeError(f"Extension step rule failed: {exc}", address=ip, opcode=opcode) from exc

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except IntcodeError:
            raise
        except Exception as exc:
            raise IntcodeRuntimeError(f"Extension hook '{event}' failed: {exc}", address=self.ip) from exc


class TracebackFormatter:
    def __init__(self, machine: Machine, *, limit: int = 10) -> None:
        self.machine = machine
        self.limit = limit

    def build_frames(self) -> List[StateEntry]:
        return self.machine.logger.tail(self.limit)

    def format_text(self, error: IntcodeError, verbose: bool) -> str:
        lines = ["Traceback (most recent step last):"]
        frames = self.build_frames()
        for entry in frames:
            mnemonic = OPCODES[entry.opcode][0]
            words = ",".join(str(word) for word in entry.instruction)
            lines.append(f"  Step {entry.step_index} at address {entry.address}, in {mnemonic}")
            lines.append(f"    {words}")
            if verbose:
                lines.append(f"    State id: {entry.state_id}  Relative base: {entry.relative_base}")
        if not frames:
            lines.append(f"  <no step log> at address {self.machine.ip} after {self.machine.steps} steps")
        lines.append(f"{error.__class__.__name__}: {error}")
        return "\n".join(lines)

    def to_json(self, error: IntcodeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, entry in enumerate(self.build_frames()):
            frames_json.append(
                {
                    "frame_index": index,
                    "state_id": entry.state_id,
                    "step_index": entry.step_index,
                    "address": entry.address,
                    "opcode": entry.opcode,
                    "instruction": entry.instruction,
                    "relative_base": entry.relative_base,
                }
            )
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": getattr(error, "message", str(error)),
                "address": getattr(error, "address", None),
                "opcode": getattr(error, "opcode", None),
                "failing_step_index": getattr(error, "step_index", None),
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
