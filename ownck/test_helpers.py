# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from ownck.borrowck.verifier import FunctionResult, ProgramResult, verify_program
from ownck.core.config import DEFAULT_CONFIG, CheckerConfig
from ownck.ir.program import TProgram
from ownck.ir.reader import parse_program

# Callees most scenario tests need; declared up front so bodies stay short.
PRELUDE = """
struct Resource { id: Int }
struct Pair { a: Int, b: Int }
struct Two { r: Resource, k: Int }
enum Opt { Some(Resource), None }

extern fn read(r: &Int);
extern fn write(r: &mut Int);
extern fn use_int(v: Int);
extern fn consume(r: Resource);
extern fn inspect(r: &Resource);
extern fn inspect_opt(o: &Opt);
extern fn consume_opt(o: Opt);
"""


def check_source(source: str, *, prelude: bool = True, config: CheckerConfig = DEFAULT_CONFIG) -> ProgramResult:
	"""Parse textual IR (optionally after `PRELUDE`) and verify every function."""
	program = parse_program(PRELUDE + source if prelude else source, filename="<test>")
	return verify_program(program, config)


def check_fn(source: str, name: str = "f", **kwargs) -> FunctionResult:
	"""Verify `source` and return the result for function `name`."""
	return check_source(source, **kwargs).function(name)


def parse(source: str, *, prelude: bool = True) -> TProgram:
	return parse_program(PRELUDE + source if prelude else source, filename="<test>")


def line_of(source: str, needle: str, *, prelude: bool = True) -> int:
	"""1-based line of the first occurrence of `needle` in the checked text."""
	text = PRELUDE + source if prelude else source
	for idx, line in enumerate(text.splitlines(), start=1):
		if needle in line:
			return idx
	raise AssertionError(f"{needle!r} not found")
