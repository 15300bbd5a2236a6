# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Move / initialization tracker.

Forward dataflow over the CFG computing, at every point, whether each place
is initialized, moved, partially moved or uninitialized:

- parameters start initialized, every other binding starts uninitialized;
- `let x = v` / `x = v` initialize (and forget any moved sub-places); a
  write through an unknown index (`v[j] = ...`) re-initializes nothing;
- by-value use of a move-only place moves it; Copy types are exempt;
- `let x;` and scope ends (StorageDead) make the binding uninitialized.

At joins a place stays initialized only if it is initialized on every
incoming edge; "maybe moved" wins over "maybe uninitialized". Partially moved
is not stored: it is derived from moved descendants, which survive joins, so
a partial move on any incoming edge keeps the whole partially moved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Mapping, Optional, Tuple

from ownck.core.config import IterationBudget
from ownck.core.diagnostics import DiagnosticKind, DiagnosticSink, RelatedSpan
from ownck.core.span import Span
from ownck.ir import nodes as T

from .accesses import Access, AccessKind, StatementEffects
from .cfg import Cfg, Point
from .place import Place, PlaceRelation, compare_places

logger = logging.getLogger(__name__)


class PlaceState(Enum):
	"""Validity state for a place."""

	INIT = auto()
	PARTIAL = auto()
	MOVED = auto()
	UNINIT = auto()


def merge_place_state(a: PlaceState, b: PlaceState) -> PlaceState:
	"""
	Join operation for stored place states used in dataflow merges.

	MOVED dominates, then UNINIT, then INIT. PARTIAL is never stored.
	"""
	if a is b:
		return a
	if PlaceState.MOVED in (a, b):
		return PlaceState.MOVED
	if PlaceState.UNINIT in (a, b):
		return PlaceState.UNINIT
	return PlaceState.INIT


@dataclass
class MoveState:
	"""Dataflow state at a CFG point: explicit place states plus move sites."""

	entries: Dict[Place, PlaceState] = field(default_factory=dict)
	move_sites: Dict[Place, Span] = field(default_factory=dict)

	def copy(self) -> "MoveState":
		return MoveState(dict(self.entries), dict(self.move_sites))

	def _own_state(self, place: Place) -> Tuple[PlaceState, Optional[Place]]:
		"""State inherited from the shallowest moved/uninit ancestor-or-self entry."""
		best: Optional[Tuple[int, PlaceState, Place]] = None
		for entry, st in self.entries.items():
			if st is PlaceState.INIT:
				continue
			rel = compare_places(entry, place)
			if rel not in (PlaceRelation.EQUAL, PlaceRelation.PREFIX):
				continue
			depth = len(entry.projections)
			if best is None or depth < best[0]:
				best = (depth, st, entry)
		if best is None:
			return PlaceState.INIT, None
		return best[1], best[2]

	def state_of(self, place: Place) -> PlaceState:
		return self.lookup(place)[0]

	def lookup(self, place: Place) -> Tuple[PlaceState, Optional[Place]]:
		"""
		Full 4-state lookup; returns the state and the entry responsible.

		A place with no moved/uninit ancestor is PARTIAL when one of its
		descendants is moved or uninitialized.
		"""
		own, culprit = self._own_state(place)
		if own is not PlaceState.INIT:
			return own, culprit
		for entry, st in self.entries.items():
			if st is PlaceState.INIT:
				continue
			if compare_places(entry, place) is PlaceRelation.EXTENDS:
				return PlaceState.PARTIAL, entry
		return PlaceState.INIT, None

	def _clear_below(self, place: Place) -> None:
		"""Drop entries for `place` and the places it syntactically contains."""
		depth = len(place.projections)
		for entry in list(self.entries):
			if entry.root == place.root and entry.projections[:depth] == place.projections:
				del self.entries[entry]
				self.move_sites.pop(entry, None)

	def set_init(self, place: Place) -> None:
		# `v[j] = ...` may or may not hit the element `v[i]` moved out of.
		if not place.is_exact():
			return
		self._clear_below(place)
		self.entries[place] = PlaceState.INIT

	def set_moved(self, place: Place, span: Span) -> None:
		self._clear_below(place)
		self.entries[place] = PlaceState.MOVED
		self.move_sites[place] = span

	def set_uninit(self, root: Place) -> None:
		self._clear_below(root)
		self.entries[root] = PlaceState.UNINIT

	def merged(self, other: "MoveState") -> "MoveState":
		result = MoveState()
		for key in set(self.entries) | set(other.entries):
			result.entries[key] = merge_place_state(self._own_state(key)[0], other._own_state(key)[0])
		for src in (other.move_sites, self.move_sites):
			for key, span in src.items():
				if result.entries.get(key) is PlaceState.MOVED:
					result.move_sites[key] = span
		return result

	def same_as(self, other: "MoveState") -> bool:
		return self.entries == other.entries and set(self.move_sites) == set(other.move_sites)


def initial_move_state(fn: T.TFunction) -> MoveState:
	"""Parameters are initialized on entry, every other binding is not."""
	state = MoveState()
	for bid, binding in fn.bindings.items():
		root = Place(bid, (), binding.name)
		state.entries[root] = PlaceState.INIT if binding.kind is T.BindingKind.PARAM else PlaceState.UNINIT
	return state


@dataclass
class MoveResults:
	"""Solved move states: the state *before* each reachable point."""

	states: Dict[Point, MoveState]

	def state_before(self, point: Point) -> MoveState:
		return self.states[point]


class MoveTracker:
	"""Run the initialization dataflow and report use-after-move / use-of-uninit."""

	def __init__(
		self,
		cfg: Cfg,
		fn: T.TFunction,
		effects: Mapping[Point, StatementEffects],
		sink: DiagnosticSink,
		*,
		max_iterations: Optional[int] = None,
	) -> None:
		self.cfg = cfg
		self.fn = fn
		self.effects = effects
		self.sink = sink
		self.max_iterations = max_iterations
		self._report = False

	def run(self) -> MoveResults:
		in_states = self._solve()
		# Second sweep with converged in-states: report each violation once.
		self._report = True
		states: Dict[Point, MoveState] = {}
		for bid in self.cfg.reachable_blocks():
			self._transfer_block(bid, in_states[bid], record=states)
		return MoveResults(states)

	def _solve(self) -> Dict[int, MoveState]:
		budget = IterationBudget("move tracking", self.max_iterations)
		order = self.cfg.reachable_blocks()
		rank = {bid: i for i, bid in enumerate(order)}
		in_states: Dict[int, MoveState] = {self.cfg.entry: initial_move_state(self.fn)}
		worklist: List[int] = [self.cfg.entry]
		while worklist:
			budget.tick()
			worklist.sort(key=lambda b: rank[b], reverse=True)
			bid = worklist.pop()
			out_state = self._transfer_block(bid, in_states[bid])
			for succ in self.cfg.successors(bid):
				if not self.cfg.is_reachable(succ):
					continue
				prev = in_states.get(succ)
				merged = out_state.copy() if prev is None else prev.merged(out_state)
				if prev is None or not merged.same_as(prev):
					in_states[succ] = merged
					if succ not in worklist:
						worklist.append(succ)
		logger.debug("move tracking for %s converged after %d block visits", self.fn.name, budget.steps)
		return in_states

	def _transfer_block(
		self,
		bid: int,
		in_state: MoveState,
		*,
		record: Optional[Dict[Point, MoveState]] = None,
	) -> MoveState:
		state = in_state.copy()
		for pt in self.cfg.points(bid):
			if record is not None:
				record[pt] = state.copy()
			fx = self.effects.get(pt)
			if fx is None:
				continue
			for access in fx.accesses:
				self._apply(state, access)
		return state

	# Transfer ------------------------------------------------------------------

	def _apply(self, state: MoveState, access: Access) -> None:
		kind = access.kind
		place = access.place
		if kind in (AccessKind.DECLARE, AccessKind.STORAGE_DEAD):
			state.set_uninit(place)
			return
		if kind is AccessKind.INIT:
			state.set_init(place)
			return
		if kind is AccessKind.WRITE:
			parent = place.parent()
			if parent is not None and not self._check_usable(state, parent, access, allow_partial=True, what="assign to part of"):
				return
			state.set_init(place)
			return
		if kind is AccessKind.INSPECT:
			self._check_usable(state, place, access, allow_partial=True, what="match on")
			return
		if access.is_borrow:
			self._check_usable(state, place, access, allow_partial=False, what="borrow of")
			return
		if kind is AccessKind.READ:
			self._check_usable(state, place, access, allow_partial=False, what="use of")
			return
		if kind is AccessKind.MOVE:
			if place.through_deref():
				# The referent belongs to the lender.
				if self._report:
					self.sink.error(
						DiagnosticKind.USE_WHILE_BORROWED,
						f"cannot move out of '{place.render()}', which is behind a reference",
						access.span,
					)
				return
			if self._check_usable(state, place, access, allow_partial=False, what="use of"):
				state.set_moved(place, access.span)

	def _check_usable(
		self,
		state: MoveState,
		place: Place,
		access: Access,
		*,
		allow_partial: bool,
		what: str,
	) -> bool:
		st, culprit = state.lookup(place)
		if st is PlaceState.INIT or (st is PlaceState.PARTIAL and allow_partial):
			return True
		if not self._report:
			return False
		name = place.render()
		if st is PlaceState.UNINIT:
			binding = self.fn.bindings.get(place.root)
			related = []
			if binding is not None:
				related.append(RelatedSpan(binding.loc, f"binding '{binding.name}' declared here"))
			self.sink.error(
				DiagnosticKind.USE_OF_UNINITIALIZED,
				f"{what} possibly-uninitialized '{name}'",
				access.span,
				related,
			)
			return False
		related = []
		if culprit is not None:
			site = state.move_sites.get(culprit)
			if site is not None:
				related.append(RelatedSpan(site, f"value moved here ('{culprit.render()}')"))
		if st is PlaceState.PARTIAL:
			message = f"{what} partially moved value '{name}'"
		else:
			message = f"use after move: {what} moved value '{name}'"
		self.sink.error(DiagnosticKind.USE_AFTER_MOVE, message, access.span, related)
		return False


__all__ = [
	"PlaceState",
	"merge_place_state",
	"MoveState",
	"MoveResults",
	"MoveTracker",
	"initial_move_state",
]
