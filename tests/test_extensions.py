"""
Tests for execution hooks: event handlers, every-N-step rules and
extension module loading.
"""

import io
import textwrap

import pytest

from extensions import (
    ExtensionAPI,
    IntcodeExtensionError,
    build_default_services,
    load_runtime_services,
)
from interpreter import IntcodeRuntimeError, Machine


def make_api():
    services = build_default_services()
    return services, ExtensionAPI(services=services, ext_name="test")


class TestHooks:
    def test_output_and_halt_events(self):
        services, ext = make_api()
        seen = []
        ext.on_event("output", lambda machine, value: seen.append(("output", value)))
        ext.on_event("halt", lambda machine: seen.append(("halt", machine.ip)))
        Machine([104, 8, 99], services=services).run()
        assert seen == [("output", 8), ("halt", 2)]

    def test_suspend_and_input_events(self):
        services, ext = make_api()
        seen = []

        @ext.on_event("input")
        def on_input(machine, value):
            seen.append(("input", value))

        @ext.on_event("suspend")
        def on_suspend(machine):
            seen.append(("suspend", machine.ip))

        Machine([3, 0, 3, 1, 99], services=services).run_with_input(4)
        assert seen == [("input", 4), ("suspend", 2)]

    def test_priority_order(self):
        services, ext = make_api()
        order = []
        ext.on_event("halt", lambda m: order.append("low"), priority=0)
        ext.on_event("halt", lambda m: order.append("high"), priority=10)
        Machine([99], services=services).run()
        assert order == ["high", "low"]

    def test_step_rule(self):
        services, ext = make_api()
        steps = []
        ext.every_n_steps(1, lambda machine, ctx: steps.append((ctx.step_index, ctx.address, ctx.opcode)))
        Machine([1, 0, 0, 0, 99], services=services).run()
        assert steps == [(0, 0, 1), (1, 4, 99)]

    def test_step_rule_every_other_step(self):
        services, ext = make_api()
        steps = []

        @ext.every_n_steps(2)
        def sample(machine, ctx):
            steps.append(ctx.step_index)

        Machine([104, 1, 104, 2, 104, 3, 99], services=services).run()
        assert steps == [0, 2]

    def test_before_step_event(self):
        services, ext = make_api()
        seen = []
        ext.on_event("before_step", lambda machine, ip, opcode: seen.append((ip, opcode)))
        Machine([1101, 1, 1, 0, 99], services=services).run()
        assert seen == [(0, 1), (4, 99)]

    def test_before_step_fires_once_for_suspended_input(self):
        services, ext = make_api()
        seen = []
        ext.on_event("before_step", lambda machine, ip, opcode: seen.append(ip))
        machine = Machine([3, 0, 3, 1, 99], services=services)
        machine.run_with_input(4)
        machine.run_with_input(5)
        assert seen == [0, 2, 4]

    def test_run_start_fires_per_run_call(self):
        services, ext = make_api()
        starts = []
        ext.on_event("run_start", lambda machine: starts.append(machine.ip))
        machine = Machine([3, 0, 3, 1, 99], services=services)
        machine.run_with_input(4)
        machine.run_with_input(5)
        assert starts == [0, 2]

    def test_error_event(self):
        services, ext = make_api()
        errors = []
        ext.on_event("on_error", lambda machine, error: errors.append(type(error).__name__))
        with pytest.raises(IntcodeRuntimeError):
            Machine([42], services=services).run()
        assert errors == ["IntcodeDecodeError"]

    def test_failing_hook_is_wrapped(self):
        services, ext = make_api()

        def explode(machine, value):
            raise ValueError("hook failed")

        ext.on_event("output", explode)
        with pytest.raises(IntcodeRuntimeError) as excinfo:
            Machine([104, 1, 99], services=services).run(None, io.StringIO())
        assert "output" in str(excinfo.value)

    def test_unknown_event(self):
        _, ext = make_api()
        with pytest.raises(IntcodeExtensionError):
            ext.on_event("nope", lambda *a: None)

    def test_step_rule_must_be_positive(self):
        _, ext = make_api()
        with pytest.raises(IntcodeExtensionError):
            ext.every_n_steps(0, lambda m, c: None)

    def test_copies_share_services(self):
        services, ext = make_api()
        halts = []
        ext.on_event("halt", lambda machine: halts.append(machine))
        base = Machine([99], services=services)
        clone = base.copy()
        clone.run()
        assert halts == [clone]


class TestLoading:
    def test_load_extension_file(self, tmp_path):
        path = tmp_path / "counter.py"
        path.write_text(
            textwrap.dedent(
                """
                INTCODE_EXTENSION_NAME = "counter"
                COUNTS = []

                def intcode_register(ext):
                    ext.metadata(name="counter", version="1.0.0")
                    ext.on_event("output", lambda machine, value: COUNTS.append(value))
                """
            ),
            encoding="utf-8",
        )
        services = load_runtime_services([str(path)])
        assert [m.name for m in services.metadata] == ["counter"]
        outputs = []
        Machine([104, 5, 99], services=services).run(None, outputs.append)
        assert outputs == [5]

    def test_missing_extension(self, tmp_path):
        with pytest.raises(IntcodeExtensionError):
            load_runtime_services([str(tmp_path / "absent.py")])

    def test_extension_without_register(self, tmp_path):
        path = tmp_path / "empty.py"
        path.write_text("X = 1\n", encoding="utf-8")
        with pytest.raises(IntcodeExtensionError):
            load_runtime_services([str(path)])

    def test_extension_api_version_mismatch(self, tmp_path):
        path = tmp_path / "future.py"
        path.write_text(
            "INTCODE_EXTENSION_API_VERSION = 99\ndef intcode_register(ext):\n    pass\n",
            encoding="utf-8",
        )
        with pytest.raises(IntcodeExtensionError):
            load_runtime_services([str(path)])
