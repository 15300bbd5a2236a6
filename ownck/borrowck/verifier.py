# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Verifier: runs every analysis over each function and merges the outcome.

Per function the pipeline is

  CFG → per-point effects → region inference → move tracking →
  borrow lattice → region validity → diagnostics

and the function is accepted iff no error diagnostic was produced. Functions
are independent: the only shared inputs (IR, type table, signature table) are
read-only once verification starts, so a program may be checked by a thread
pool. Results always come back in program order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ownck.core.config import DEFAULT_CONFIG, CheckerConfig
from ownck.core.diagnostics import Diagnostic, DiagnosticKind, DiagnosticSink
from ownck.core.errors import AnalysisLimitError, IRContractError
from ownck.core.types_core import TypeTable
from ownck.ir import nodes as T
from ownck.ir.program import TProgram
from ownck.ir.signatures import SignatureTable, signature_of

from .accesses import collect_effects
from .cfg import Cfg, StorageDead, build_cfg
from .loans import BorrowLattice
from .moves import MoveTracker
from .regions import RegionExtent, RegionSolution, solve_regions

logger = logging.getLogger(__name__)


@dataclass
class FunctionResult:
	"""Outcome of verifying one function."""

	name: str
	accepted: bool
	diagnostics: List[Diagnostic] = field(default_factory=list)
	warnings: List[Diagnostic] = field(default_factory=list)
	regions: Mapping[str, RegionExtent] = field(default_factory=dict)
	contract_error: Optional[str] = None
	cfg: Optional[Cfg] = field(default=None, repr=False, compare=False)
	solution: Optional[RegionSolution] = field(default=None, repr=False, compare=False)

	def kinds(self) -> List[str]:
		return [d.code or "" for d in self.diagnostics]

	def to_json(self) -> Dict[str, Any]:
		return {
			"name": self.name,
			"accepted": self.accepted,
			"contract_error": self.contract_error,
			"diagnostics": [d.to_json() for d in self.diagnostics],
			"warnings": [d.to_json() for d in self.warnings],
			"regions": {
				name: {"points": [str(p) for p in sorted(ext.points)], "ends": sorted(ext.ends)}
				for name, ext in self.regions.items()
			},
		}


@dataclass
class ProgramResult:
	functions: List[FunctionResult] = field(default_factory=list)

	@property
	def accepted(self) -> bool:
		return all(f.accepted for f in self.functions)

	def function(self, name: str) -> FunctionResult:
		for res in self.functions:
			if res.name == name:
				return res
		raise KeyError(name)

	def diagnostics(self) -> List[Diagnostic]:
		"""Errors then warnings of every function, in program order."""
		out: List[Diagnostic] = []
		for res in self.functions:
			out.extend(res.diagnostics)
			out.extend(res.warnings)
		return out


def prepare_function(fn: T.TFunction, types: TypeTable) -> None:
	"""Single-threaded setup that mutates the IR: adds the return slot."""
	fn.ensure_return_binding(types.ensure_unit())


def _unreachable_warnings(cfg: Cfg, sink: DiagnosticSink) -> None:
	for blk in cfg.blocks:
		if blk.id not in cfg.unreachable or not blk.has_user_statements():
			continue
		first = next(s for s in blk.statements if not isinstance(s, StorageDead))
		sink.warning(DiagnosticKind.UNREACHABLE_CODE, "unreachable code", getattr(first, "loc", None))


def verify_function(
	fn: T.TFunction,
	types: TypeTable,
	signatures: SignatureTable,
	config: CheckerConfig = DEFAULT_CONFIG,
) -> FunctionResult:
	"""
	Verify one prepared function (see `prepare_function`).

	IR contract violations and iteration-cap overflows abort this function
	only: it is rejected and the error is recorded on the result.
	"""
	sink = DiagnosticSink()
	limit = config.max_iterations
	try:
		signature = signatures.get(fn.name) or signature_of(fn)
		signature.validate(types)
		cfg = build_cfg(fn)
		effects = collect_effects(cfg, fn, types, signatures)
		solution = solve_regions(cfg, fn, types, effects, signature, max_iterations=limit)
		MoveTracker(cfg, fn, effects, sink, max_iterations=limit).run()
		loans = BorrowLattice(cfg, effects, solution, sink, max_iterations=limit).run()
		solution.check_validity(loans.in_scope, sink)
		if config.report_unreachable:
			_unreachable_warnings(cfg, sink)
	except (IRContractError, AnalysisLimitError) as exc:
		loc = getattr(exc, "loc", None)
		where = f"{loc.describe()}: " if loc is not None and loc.is_known else ""
		logger.warning("verification of %s aborted: %s", fn.name, exc)
		return FunctionResult(fn.name, accepted=False, contract_error=f"{where}{exc}")
	errors = sink.errors()
	logger.debug("%s: %d error(s), %d warning(s)", fn.name, len(errors), len(sink.warnings()))
	return FunctionResult(
		fn.name,
		accepted=not errors,
		diagnostics=errors,
		warnings=sink.warnings(),
		regions=solution.region_map(),
		cfg=cfg,
		solution=solution,
	)


def verify_program(program: TProgram, config: CheckerConfig = DEFAULT_CONFIG) -> ProgramResult:
	"""Verify every function of `program`; one failure never stops the others."""
	signatures = program.signature_table()
	for fn in program.functions:
		prepare_function(fn, program.types)
	results: List[Optional[FunctionResult]] = [None] * len(program.functions)
	if config.jobs > 1 and len(program.functions) > 1:
		with ThreadPoolExecutor(max_workers=config.jobs) as executor:
			futures = {
				executor.submit(verify_function, fn, program.types, signatures, config): idx
				for idx, fn in enumerate(program.functions)
			}
			for future in as_completed(futures):
				results[futures[future]] = future.result()
	else:
		for idx, fn in enumerate(program.functions):
			results[idx] = verify_function(fn, program.types, signatures, config)
	done = [r for r in results if r is not None]
	logger.info(
		"verified %d function(s): %d accepted",
		len(done),
		sum(1 for r in done if r.accepted),
	)
	return ProgramResult(done)


__all__ = [
	"FunctionResult",
	"ProgramResult",
	"prepare_function",
	"verify_function",
	"verify_program",
]
