"""Intcode entry point and stepwise driver wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional, TextIO

from extensions import IntcodeExtensionError, RuntimeServices, load_runtime_services
from interpreter import IntcodeRuntimeError, Machine, TracebackFormatter
from lexer import IntcodeParseError, parse_int
from parser import read_program


def run_stepwise(machine: Machine, stdin: TextIO, stdout: TextIO) -> int:
    """Feed one value per round trip until the program halts or input ends."""
    prompt = "\x1b[38;2;153;221;255m<<<\033[0m " if stdin.isatty() else ""
    # Nothing is read until the program actually asks for a value.
    if machine.run_until_input(stdout):
        return 0
    while True:
        if prompt:
            stdout.write(prompt)
            stdout.flush()
        line = stdin.readline()
        if line == "":
            print("Input ended before program halted", file=sys.stderr)
            return 1
        if line.strip() == "":
            continue
        try:
            value = parse_int(line)
        except IntcodeParseError as error:
            print(f"ParseError: {error}", file=sys.stderr)
            continue
        if machine.run_with_input(value, stdout):
            return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Intcode virtual machine")
    parser.add_argument("program", help="Program image path or literal image text with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal image text")
    parser.add_argument("-step", "--step", dest="step_mode", action="store_true", help="Drive the machine one input value at a time")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Keep the full step log for tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--ext", action="append", default=[], help="Extension module path (repeatable)")
    args = parser.parse_args(argv)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    try:
        services: Optional[RuntimeServices] = load_runtime_services(args.ext) if args.ext else None
        image = read_program(source_text, filename)
    except IntcodeExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1
    except IntcodeParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1

    machine = Machine(image, verbose=args.verbose, services=services)
    try:
        if args.step_mode:
            return run_stepwise(machine, sys.stdin, sys.stdout)
        machine.run(sys.stdin, sys.stdout)
    except IntcodeParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except IntcodeRuntimeError as error:
        formatter = TracebackFormatter(machine)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
