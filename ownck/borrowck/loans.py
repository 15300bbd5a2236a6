# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Borrow state lattice: which loans are in scope at each CFG point.

A loan is created by a borrow expression and stays in scope along every path
from its origin for as long as the CFG point lies in the loan's solved region
(see `ownck.borrowck.regions`). Joins are set unions. Each access of a point
is checked against the loans in scope when it executes:

  * `&mut P` conflicts with any loan overlapping P;
  * `&P` conflicts with an exclusive loan overlapping P;
  * reading P conflicts with an exclusive loan overlapping P;
  * writing or moving P conflicts with any loan overlapping P.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, FrozenSet, List, Mapping, Optional, Set

from ownck.core.config import IterationBudget
from ownck.core.diagnostics import DiagnosticKind, DiagnosticSink, RelatedSpan
from ownck.core.span import Span

from .accesses import Access, AccessKind, LoanKey, StatementEffects
from .cfg import Cfg, Point
from .place import DerefProj, Place, PlaceRelation, compare_places, places_conflict
from .regions import RefId, RegionSolution

logger = logging.getLogger(__name__)


class LoanKind(Enum):
	SHARED = auto()
	EXCLUSIVE = auto()


@dataclass(frozen=True)
class Loan:
	"""Outstanding borrow of `place` created at `key.point`."""

	key: LoanKey
	place: Place
	kind: LoanKind
	span: Span
	region: RefId

	@property
	def origin(self) -> Point:
		return self.key.point

	def describe(self) -> str:
		prefix = "&mut " if self.kind is LoanKind.EXCLUSIVE else "&"
		return f"{prefix}{self.place.render()} @ {self.key}"


LoanSet = FrozenSet[Loan]


def _overwrite_spares(target: Place, loaned: Place) -> bool:
	"""
	True when overwriting `target` leaves the storage of `loaned` intact.

	Replacing a reference does not touch the data behind it, so a loan on
	`(*r).f` survives `r = ...`.
	"""
	if compare_places(target, loaned) is not PlaceRelation.PREFIX:
		return False
	return any(isinstance(p, DerefProj) for p in loaned.projections[len(target.projections):])


@dataclass
class LoanResults:
	"""Loans created in the function and the set in scope *before* each point."""

	loans: Dict[LoanKey, Loan]
	in_scope: Dict[Point, LoanSet]

	def live_at(self, point: Point) -> LoanSet:
		return self.in_scope.get(point, frozenset())


class BorrowLattice:
	"""Forward dataflow of in-scope loans plus conflict reporting."""

	def __init__(
		self,
		cfg: Cfg,
		effects: Mapping[Point, StatementEffects],
		regions: RegionSolution,
		sink: DiagnosticSink,
		*,
		max_iterations: Optional[int] = None,
	) -> None:
		self.cfg = cfg
		self.effects = effects
		self.regions = regions
		self.sink = sink
		self.max_iterations = max_iterations
		self.loans: Dict[LoanKey, Loan] = {}
		self._report = False
		self._collect_loans()

	def _collect_loans(self) -> None:
		for pt in self.cfg.all_points():
			fx = self.effects.get(pt)
			for access in fx.accesses if fx is not None else ():
				if access.loan is None:
					continue
				kind = LoanKind.EXCLUSIVE if access.kind is AccessKind.BORROW_MUT else LoanKind.SHARED
				self.loans[access.loan] = Loan(access.loan, access.place, kind, access.span, RefId.loan(access.loan))

	def _keep(self, loans: Set[Loan], point: Point) -> LoanSet:
		return frozenset(l for l in loans if point in self.regions.loan_extent(l.key))

	def run(self) -> LoanResults:
		in_states = self._solve()
		self._report = True
		in_scope: Dict[Point, LoanSet] = {}
		for bid in self.cfg.reachable_blocks():
			self._transfer_block(bid, in_states[bid], record=in_scope)
		return LoanResults(dict(self.loans), in_scope)

	def _solve(self) -> Dict[int, LoanSet]:
		budget = IterationBudget("borrow lattice", self.max_iterations)
		in_states: Dict[int, LoanSet] = {self.cfg.entry: frozenset()}
		worklist: List[int] = [self.cfg.entry]
		while worklist:
			budget.tick()
			bid = worklist.pop()
			out_state = self._transfer_block(bid, in_states[bid])
			for succ in self.cfg.successors(bid):
				if not self.cfg.is_reachable(succ):
					continue
				incoming = self._keep(set(out_state), Point(succ, 0))
				prev = in_states.get(succ)
				merged = incoming if prev is None else prev | incoming
				if merged != prev:
					in_states[succ] = merged
					if succ not in worklist:
						worklist.append(succ)
		logger.debug("borrow lattice converged after %d block visits (%d loans)", budget.steps, len(self.loans))
		return in_states

	def _transfer_block(
		self,
		bid: int,
		in_state: LoanSet,
		*,
		record: Optional[Dict[Point, LoanSet]] = None,
	) -> LoanSet:
		live: Set[Loan] = set(in_state)
		points = self.cfg.points(bid)
		for i, pt in enumerate(points):
			if record is not None:
				record[pt] = frozenset(live)
			fx = self.effects.get(pt)
			for access in fx.accesses if fx is not None else ():
				self._check(access, live)
				if access.loan is not None:
					live.add(self.loans[access.loan])
			if i + 1 < len(points):
				live = set(self._keep(live, points[i + 1]))
		return frozenset(live)

	# Conflicts -----------------------------------------------------------------

	def _check(self, access: Access, live: Set[Loan]) -> None:
		if not self._report or not live:
			return
		kind = access.kind
		if kind in (AccessKind.INIT, AccessKind.DECLARE, AccessKind.STORAGE_DEAD):
			return
		for loan in sorted(live, key=lambda l: l.key):
			if not places_conflict(access.place, loan.place):
				continue
			if kind is AccessKind.BORROW_MUT:
				self._conflicting_borrow(access, loan, "mutable")
				return
			if kind is AccessKind.BORROW_SHARED and loan.kind is LoanKind.EXCLUSIVE:
				self._conflicting_borrow(access, loan, "shared")
				return
			if kind in (AccessKind.READ, AccessKind.INSPECT) and loan.kind is LoanKind.EXCLUSIVE:
				self._use_while_borrowed(access, loan, "use")
				return
			if kind is AccessKind.WRITE and not _overwrite_spares(access.place, loan.place):
				self._use_while_borrowed(access, loan, "assign to")
				return
			if kind is AccessKind.MOVE:
				self._use_while_borrowed(access, loan, "move out of")
				return

	def _conflicting_borrow(self, access: Access, loan: Loan, how: str) -> None:
		held = "mutably" if loan.kind is LoanKind.EXCLUSIVE else "also"
		self.sink.error(
			DiagnosticKind.CONFLICTING_BORROW,
			f"cannot borrow '{access.place.render()}' as {how} because it is {held} borrowed",
			access.span,
			[RelatedSpan(loan.span, f"previous borrow of '{loan.place.render()}' here")],
		)

	def _use_while_borrowed(self, access: Access, loan: Loan, verb: str) -> None:
		self.sink.error(
			DiagnosticKind.USE_WHILE_BORROWED,
			f"cannot {verb} '{access.place.render()}' while it is borrowed",
			access.span,
			[RelatedSpan(loan.span, f"borrow of '{loan.place.render()}' here")],
		)


__all__ = ["LoanKind", "Loan", "LoanSet", "LoanResults", "BorrowLattice"]
