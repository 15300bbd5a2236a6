# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Command-line driver: read a textual IR file, verify every function, report.

Exit code 0 when every function is accepted, 1 otherwise (including syntax
errors and IR contract violations).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from ownck.borrowck.verifier import FunctionResult, ProgramResult, verify_program
from ownck.core.config import CheckerConfig
from ownck.core.diagnostics import Diagnostic
from ownck.ir.reader import IRSyntaxError, parse_program_file

logger = logging.getLogger("ownck")


def _diag_to_json(diag: Diagnostic, source: Path) -> Dict[str, Any]:
	"""Render a Diagnostic to a structured JSON-friendly dict."""
	payload = diag.to_json()
	if payload["file"] is None:
		payload["file"] = str(source)
	for rel in payload["related"]:
		if rel["file"] is None:
			rel["file"] = str(source)
	return payload


def _format_diag(diag: Diagnostic, source: Path) -> List[str]:
	span = diag.span
	file = span.file or str(source)
	loc = f"{span.line if span.line is not None else '?'}:{span.column if span.column is not None else '?'}"
	kind = f"[{diag.code}] " if diag.code else ""
	lines = [f"{file}:{loc}: {diag.severity}: {kind}{diag.message}"]
	for rel in diag.related:
		rspan = rel.span
		rloc = f"{rspan.line if rspan.line is not None else '?'}:{rspan.column if rspan.column is not None else '?'}"
		lines.append(f"    {rspan.file or file}:{rloc}: note: {rel.label}")
	for note in diag.notes:
		lines.append(f"    note: {note}")
	return lines


def _contract_error_json(res: FunctionResult, source: Path) -> Dict[str, Any]:
	return {
		"phase": "borrowcheck",
		"kind": "IRContractError",
		"message": f"{res.name}: {res.contract_error}",
		"severity": "error",
		"file": str(source),
		"line": None,
		"column": None,
		"related": [],
		"notes": [],
	}


def _report(result: ProgramResult, source: Path, args: argparse.Namespace) -> int:
	exit_code = 0 if result.accepted else 1
	if args.json:
		diagnostics: List[Dict[str, Any]] = []
		for res in result.functions:
			if res.contract_error is not None:
				diagnostics.append(_contract_error_json(res, source))
			diagnostics.extend(_diag_to_json(d, source) for d in res.diagnostics + res.warnings)
		payload = {
			"exit_code": exit_code,
			"diagnostics": diagnostics,
			"functions": [res.to_json() for res in result.functions],
		}
		print(json.dumps(payload))
		return exit_code
	for res in result.functions:
		if res.contract_error is not None:
			print(f"{source}:?:?: error: [IRContractError] {res.name}: {res.contract_error}", file=sys.stderr)
		for diag in res.diagnostics + res.warnings:
			for line in _format_diag(diag, source):
				print(line, file=sys.stderr)
		if args.dump_cfg and res.cfg is not None:
			print(f"cfg of {res.name}:")
			print(res.cfg.dump())
		if args.dump_regions and res.solution is not None:
			print(res.solution.render())
	accepted = sum(1 for r in result.functions if r.accepted)
	print(f"{accepted}/{len(result.functions)} function(s) accepted", file=sys.stderr)
	return exit_code


def main(argv: list[str] | None = None) -> int:
	"""
	Verify a textual IR file.

	With --json, prints `{"exit_code", "diagnostics", "functions"}`; otherwise
	prints human-readable diagnostics to stderr.
	"""
	parser = argparse.ArgumentParser(description="ownership and borrow verifier")
	parser.add_argument("source", type=Path, help="Path to a textual IR file")
	parser.add_argument("--json", action="store_true", help="Emit diagnostics as JSON")
	parser.add_argument("--jobs", type=int, default=1, help="Verify functions on N worker threads")
	parser.add_argument(
		"--max-iterations",
		type=int,
		default=None,
		help="Abort a function whose fixpoint needs more than N steps",
	)
	parser.add_argument(
		"--no-unreachable-warnings",
		action="store_true",
		help="Do not report unreachable code",
	)
	parser.add_argument("--dump-cfg", action="store_true", help="Print each function's CFG")
	parser.add_argument("--dump-regions", action="store_true", help="Print each function's solved regions")
	parser.add_argument("-v", "--verbose", action="count", default=0, help="Log analysis progress (-vv for debug)")
	args = parser.parse_args(argv)

	if args.verbose:
		logging.basicConfig(
			level=logging.DEBUG if args.verbose > 1 else logging.INFO,
			format="%(levelname)s %(name)s: %(message)s",
		)

	try:
		config = CheckerConfig(
			jobs=args.jobs,
			max_iterations=args.max_iterations,
			report_unreachable=not args.no_unreachable_warnings,
		)
	except ValueError as exc:
		parser.error(str(exc))

	source: Path = args.source
	try:
		program = parse_program_file(source)
	except OSError as exc:
		msg = f"cannot read {source}: {exc.strerror or exc}"
		if args.json:
			print(json.dumps({"exit_code": 1, "diagnostics": [{"phase": "parser", "message": msg, "severity": "error", "file": str(source), "line": None, "column": None}]}))
		else:
			print(f"{source}:?:?: error: {msg}", file=sys.stderr)
		return 1
	except IRSyntaxError as exc:
		loc = exc.loc
		if args.json:
			diag = {
				"phase": "parser",
				"message": str(exc),
				"severity": "error",
				"file": loc.file or str(source),
				"line": loc.line,
				"column": loc.column,
			}
			print(json.dumps({"exit_code": 1, "diagnostics": [diag]}))
		else:
			print(f"{loc.file or source}:{loc.line or '?'}:{loc.column or '?'}: error: {exc}", file=sys.stderr)
		return 1

	logger.info("verifying %d function(s) from %s", len(program.functions), source)
	result = verify_program(program, config)
	return _report(result, source, args)


if __name__ == "__main__":
	sys.exit(main())
