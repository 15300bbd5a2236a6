# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Region inference and constraint solving (non-lexical lifetimes).

Every reference-carrying value gets a region variable whose solved extent is
a set of CFG points:

  * locals: the points where the binding is live (backward liveness);
  * loans, aggregates holding references and per-call instances of callee
    region parameters: whatever flows into them from the values they reach.
    The creating point is not part of the extent; a loan from the previous
    loop iteration must not survive back to its own origin;
  * signature (universal) regions: every point of the function plus an
    end marker `end('a)` standing for "after the function returns".

Constraints `sub ⊑ sup` read "every point of sub is in sup" and are solved
as a least fixpoint by pushing points along constraint edges. The loan
lattice then keeps a loan in scope exactly at the points of its extent, and
`RegionSolution.check_validity` rejects references that outlive their data.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Deque, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from ownck.core.config import IterationBudget
from ownck.core.diagnostics import DiagnosticKind, DiagnosticSink, RelatedSpan
from ownck.core.errors import IRContractError
from ownck.core.span import Span
from ownck.core.types_core import TypeId, TypeTable
from ownck.ir import nodes as T
from ownck.ir.signatures import STATIC_REGION, FnSignature

from .accesses import (
	AccessKind,
	CallSite,
	FromAggregate,
	FromCall,
	FromLoan,
	FromPlace,
	LoanKey,
	Source,
	StatementEffects,
	Value,
)
from .cfg import Cfg, Point
from .place import Place

if TYPE_CHECKING:
	from .loans import Loan

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class RefId:
	"""
	Identity of a region variable.

	kind is one of "aggregate", "binding", "call", "loan", "universal"; `key`
	locates it (binding id, or block/index/ordinal of the creating point) and
	`label` carries the binding or region name.
	"""

	kind: str
	key: Tuple[int, ...] = ()
	label: str = ""

	@staticmethod
	def binding(binding_id: T.BindingId, name: str) -> "RefId":
		return RefId("binding", (binding_id,), name)

	@staticmethod
	def loan(key: LoanKey) -> "RefId":
		return RefId("loan", (key.point.block, key.point.index, key.ordinal))

	@staticmethod
	def aggregate(key: LoanKey) -> "RefId":
		return RefId("aggregate", (key.point.block, key.point.index, key.ordinal))

	@staticmethod
	def call(key: LoanKey, region: str) -> "RefId":
		return RefId("call", (key.point.block, key.point.index, key.ordinal), region)

	@staticmethod
	def universal(name: str) -> "RefId":
		return RefId("universal", (), name)

	def __str__(self) -> str:
		if self.kind in ("binding", "universal"):
			return self.label
		where = f"bb{self.key[0]}[{self.key[1]}]#{self.key[2]}"
		if self.kind == "call":
			return f"{self.label}@{where}"
		return f"{self.kind}@{where}"


@dataclass(frozen=True)
class RegionExtent:
	"""Solved extent: CFG points plus end markers of signature regions."""

	points: FrozenSet[Point] = frozenset()
	ends: FrozenSet[str] = frozenset()

	def __contains__(self, point: object) -> bool:
		return point in self.points

	def describe(self) -> str:
		pts = ", ".join(str(p) for p in sorted(self.points))
		ends = "".join(f" + end({e})" for e in sorted(self.ends))
		return f"{{{pts}}}{ends}"


@dataclass(frozen=True)
class Constraint:
	"""`sub ⊑ sup`, created at `span`."""

	sub: RefId
	sup: RefId
	span: Span


def outlives_closure(region_params: Iterable[str], declared: Iterable[Tuple[str, str]]) -> FrozenSet[Tuple[str, str]]:
	"""Reflexive-transitive closure of `'a: 'b` relations; `'static` outlives everything."""
	names = set(region_params) | {STATIC_REGION}
	pairs: Set[Tuple[str, str]] = {(n, n) for n in names}
	pairs |= {(STATIC_REGION, n) for n in names}
	pairs |= set(declared)
	changed = True
	while changed:
		changed = False
		for a, b in list(pairs):
			for c, d in list(pairs):
				if b == c and (a, d) not in pairs:
					pairs.add((a, d))
					changed = True
	return frozenset(pairs)


class RegionSolution:
	"""Read-only result of region inference for one function."""

	def __init__(
		self,
		fn: T.TFunction,
		cfg: Cfg,
		effects: Mapping[Point, StatementEffects],
		extents: Dict[RefId, RegionExtent],
		binding_vars: Dict[T.BindingId, RefId],
		universals: Tuple[str, ...],
		outlives: FrozenSet[Tuple[str, str]],
		end_causes: Dict[Tuple[RefId, str], Span],
	) -> None:
		self.fn = fn
		self.cfg = cfg
		self.effects = effects
		self.extents: Mapping[RefId, RegionExtent] = MappingProxyType(extents)
		self.binding_vars: Mapping[T.BindingId, RefId] = MappingProxyType(binding_vars)
		self.universals = universals
		self.outlives = outlives
		self._end_causes = end_causes

	def extent(self, ref: RefId) -> RegionExtent:
		return self.extents.get(ref, RegionExtent())

	def loan_extent(self, key: LoanKey) -> RegionExtent:
		return self.extent(RefId.loan(key))

	def binding_extent(self, binding_id: T.BindingId) -> Optional[RegionExtent]:
		ref = self.binding_vars.get(binding_id)
		return None if ref is None else self.extent(ref)

	def region_map(self) -> Mapping[str, RegionExtent]:
		"""
		Reference → extent for bindings and loans, as reported in results.

		Bindings are keyed by name; names shared by several bindings (shadowing,
		sibling scopes) get the binding id appended, as in `a#3`.
		"""
		names = [self.fn.bindings[bid].name for bid in self.binding_vars]
		out: Dict[str, RegionExtent] = {}
		for bid in sorted(self.binding_vars):
			name = self.fn.bindings[bid].name
			key = name if names.count(name) == 1 else f"{name}#{bid}"
			out[key] = self.extent(self.binding_vars[bid])
		for ref in sorted(self.extents):
			if ref.kind == "loan":
				out[str(ref)] = self.extents[ref]
		return MappingProxyType(out)

	def render(self) -> str:
		lines = [f"regions of {self.fn.name}:"]
		for name, ext in self.region_map().items():
			lines.append(f"  {name}: {ext.describe()}")
		return "\n".join(lines)

	# Validity --------------------------------------------------------------

	def check_validity(self, in_scope: Mapping[Point, FrozenSet["Loan"]], sink: DiagnosticSink) -> None:
		"""
		Report references that outlive what they point to.

		- a loan on a local's own storage still in scope where that storage ends;
		- a signature region forced to outlive another signature region without
		  a declared outlives relation.
		"""
		for pt in self.cfg.all_points():
			fx = self.effects.get(pt)
			if fx is None:
				continue
			for access in fx.accesses:
				if access.kind is not AccessKind.STORAGE_DEAD:
					continue
				for loan in sorted(in_scope.get(pt, frozenset()), key=lambda l: l.key):
					if loan.place.root != access.place.root or loan.place.through_deref():
						continue
					name = access.place.name or loan.place.render()
					sink.error(
						DiagnosticKind.DANGLING_REFERENCE,
						f"borrowed value '{loan.place.render()}' does not live long enough",
						loan.span,
						[RelatedSpan(access.span, f"'{name}' goes out of scope here while still borrowed")],
					)
		for name in self.universals:
			ext = self.extent(RefId.universal(name))
			for marker in sorted(ext.ends):
				if marker == name or name == STATIC_REGION or (name, marker) in self.outlives:
					continue
				span = self._end_causes.get((RefId.universal(name), marker), self.fn.loc)
				sink.error(
					DiagnosticKind.DANGLING_REFERENCE,
					f"reference with region {name} may outlive its data: requires {name}: {marker}",
					span,
					[RelatedSpan(self.fn.loc, f"signature of '{self.fn.name}' declares no {name}: {marker}")],
				)


class RegionSolver:
	"""Generate region constraints for one function and solve them."""

	def __init__(
		self,
		cfg: Cfg,
		fn: T.TFunction,
		types: TypeTable,
		effects: Mapping[Point, StatementEffects],
		signature: FnSignature,
		*,
		max_iterations: Optional[int] = None,
	) -> None:
		self.cfg = cfg
		self.fn = fn
		self.types = types
		self.effects = effects
		self.signature = signature
		self.max_iterations = max_iterations
		self.constraints: List[Constraint] = []
		self._seeds: Dict[RefId, Set[Point]] = {}
		self._binding_vars: Dict[T.BindingId, RefId] = {}
		self._universals: List[str] = []
		self._calls: Dict[LoanKey, CallSite] = {}
		self._loan_places: Dict[LoanKey, Place] = {}
		self._implied: List[Tuple[str, str]] = []
		self._edges: Set[Tuple[RefId, RefId]] = set()

	# Variables -----------------------------------------------------------------

	def _var(self, ref: RefId, seed: Iterable[Point] = ()) -> RefId:
		self._seeds.setdefault(ref, set()).update(seed)
		return ref

	def _universal(self, name: str) -> RefId:
		if name not in self._universals:
			self._universals.append(name)
		return self._var(RefId.universal(name))

	def _declare_universals(self) -> None:
		self._universal(STATIC_REGION)
		for name in self.fn.region_params:
			self._universal(name)
		anon: Dict[int, RefId] = {}
		for idx, param in enumerate(self.fn.params):
			if not self.types.carries_refs(param.ty):
				continue
			region = self.types.region_of(param.ty)
			if region is None:
				ref = self._universal(f"'_{param.name}")
				anon[idx] = ref
			elif region == STATIC_REGION or region in self.fn.region_params:
				ref = self._universal(region)
			else:
				raise IRContractError(f"parameter '{param.name}' names undeclared region {region}", loc=param.loc)
			self._binding_vars[param.binding_id] = ref
			# `&'r Holder<'b>` is only well formed when 'b outlives 'r.
			for inner in self.types.nested_regions(param.ty):
				if inner != ref.label:
					self._implied.append((inner, ref.label))
		ret = self.fn.bindings.get(T.RETURN_BINDING)
		if ret is not None and self.types.carries_refs(ret.ty):
			region = self.signature.elided_return_region(self.types)
			if region is not None:
				self._binding_vars[T.RETURN_BINDING] = self._universal(region)
			else:
				src = self.signature.elision_source(self.types)
				if src is None or src not in anon:
					raise IRContractError(
						f"cannot determine the region of the value returned by '{self.fn.name}'", loc=self.fn.loc
					)
				self._binding_vars[T.RETURN_BINDING] = anon[src]

	def _declare_locals(self, live: Dict[T.BindingId, Set[Point]]) -> None:
		for bid in sorted(self.fn.bindings):
			binding = self.fn.bindings[bid]
			if binding.kind is not T.BindingKind.LOCAL or not self.types.carries_refs(binding.ty):
				continue
			self._binding_vars[bid] = self._var(RefId.binding(bid, binding.name), live.get(bid, ()))

	# Liveness ------------------------------------------------------------------

	def _tracked_locals(self) -> Set[T.BindingId]:
		return {
			bid
			for bid, b in self.fn.bindings.items()
			if b.kind is T.BindingKind.LOCAL and self.types.carries_refs(b.ty)
		}

	def _liveness(self) -> Dict[T.BindingId, Set[Point]]:
		"""Backward liveness of reference-carrying locals; returns binding → live points."""
		tracked = self._tracked_locals()
		uses: Dict[Point, Set[T.BindingId]] = {}
		defs: Dict[Point, Set[T.BindingId]] = {}
		points = self.cfg.all_points()
		for pt in points:
			u: Set[T.BindingId] = set()
			d: Set[T.BindingId] = set()
			fx = self.effects.get(pt)
			for access in fx.accesses if fx is not None else ():
				root = access.place.root
				if root not in tracked:
					continue
				if access.kind in (AccessKind.INIT, AccessKind.DECLARE, AccessKind.STORAGE_DEAD):
					d.add(root)
				elif access.kind is AccessKind.WRITE and access.place.is_root():
					d.add(root)
				else:
					u.add(root)
			uses[pt] = u
			defs[pt] = d - u
		budget = IterationBudget("liveness", self.max_iterations)
		live_before: Dict[Point, FrozenSet[T.BindingId]] = {}
		worklist: Deque[Point] = deque(reversed(points))
		queued: Set[Point] = set(points)
		while worklist:
			budget.tick()
			pt = worklist.popleft()
			queued.discard(pt)
			after: Set[T.BindingId] = set()
			for succ in self.cfg.point_successors(pt):
				after |= live_before.get(succ, frozenset())
			before = frozenset(uses[pt] | (after - defs[pt]))
			if live_before.get(pt) == before:
				continue
			live_before[pt] = before
			for pred in self.cfg.point_predecessors(pt):
				if pred not in queued:
					queued.add(pred)
					worklist.append(pred)
		live: Dict[T.BindingId, Set[Point]] = {bid: set() for bid in tracked}
		for pt, bids in live_before.items():
			for bid in bids:
				live[bid].add(pt)
		logger.debug("liveness for %s: %d steps, %d tracked bindings", self.fn.name, budget.steps, len(tracked))
		return live

	# Constraints ---------------------------------------------------------------

	def _add(self, sub: RefId, sup: RefId, span: Span) -> None:
		if sub != sup and (sub, sup) not in self._edges:
			self._edges.add((sub, sup))
			self.constraints.append(Constraint(sub, sup, span))

	def _relate_nested(self, call: CallSite, ty: Optional[TypeId], holders: List[RefId]) -> None:
		"""
		Tie regions nested in `ty` (the `'a` of `&mut Holder<'a>`) to the
		values that hold them. Behind a reference they are invariant, so both
		directions are added.
		"""
		for region in self.types.nested_regions(ty):
			if region == STATIC_REGION:
				inst = self._universal(STATIC_REGION)
			else:
				inst = self._var(RefId.call(call.key, region))
			for ref in holders:
				self._add(ref, inst, call.span)
				self._add(inst, ref, call.span)

	def _holder_vars(self, value: Value, point: Point) -> List[RefId]:
		"""Region variables of what an argument points at (the referent for `&place`)."""
		out: List[RefId] = []
		for src in value.sources:
			if isinstance(src, FromLoan):
				place = self._loan_places.get(src.loan)
				ref = None if place is None else self._binding_vars.get(place.root)
			else:
				ref = self._source_var(src, point)
			if ref is not None and ref not in out:
				out.append(ref)
		return out

	def _source_vars(self, value: Value, point: Point) -> List[RefId]:
		out: List[RefId] = []
		for src in value.sources:
			ref = self._source_var(src, point)
			if ref is not None:
				out.append(ref)
		return out

	def _source_var(self, src: Source, point: Point) -> Optional[RefId]:
		if isinstance(src, FromLoan):
			return self._var(RefId.loan(src.loan))
		if isinstance(src, FromPlace):
			return self._binding_vars.get(src.place.root)
		if isinstance(src, FromCall):
			return self._call_result_var(src.call)
		if isinstance(src, FromAggregate):
			agg = self._var(RefId.aggregate(src.key))
			for part in src.parts:
				for ref in self._source_vars(part, point):
					self._add(agg, ref, Span())
			return agg
		return None  # pragma: no cover - Source is closed

	def _call_sites(self) -> Dict[LoanKey, CallSite]:
		return {call.key: call for fx in self.effects.values() for call in fx.calls}

	def _instance(self, call: CallSite, ty: Optional[TypeId], param_index: Optional[int]) -> Optional[RefId]:
		"""Region variable standing for the region named by `ty` at this call."""
		if not self.types.carries_refs(ty):
			return None
		region = self.types.region_of(ty)
		if region == STATIC_REGION:
			return self._universal(STATIC_REGION)
		if region is None:
			if param_index is None:
				return None
			region = f"'_{param_index}"
		return self._var(RefId.call(call.key, region))

	def _call_result_var(self, key: LoanKey) -> Optional[RefId]:
		call = self._calls[key]
		sig = call.signature
		region = sig.elided_return_region(self.types)
		if region is not None:
			if region == STATIC_REGION:
				result = self._universal(STATIC_REGION)
			else:
				result = self._var(RefId.call(key, region))
		else:
			src = sig.elision_source(self.types)
			if src is None:
				raise IRContractError(
					f"cannot determine the region of the value returned by '{sig.name}'", loc=call.span
				)
			result = self._instance(call, sig.param_types[src], src)
		if result is not None:
			# Whatever keeps the result alive keeps the data its pointee holds alive.
			for inner in self.types.nested_regions(sig.return_type):
				inst = self._universal(STATIC_REGION) if inner == STATIC_REGION else self._var(RefId.call(key, inner))
				self._add(result, inst, call.span)
		return result

	def _generate(self) -> None:
		self._calls = self._call_sites()
		self._loan_places = {
			access.loan: access.place
			for fx in self.effects.values()
			for access in fx.accesses
			if access.loan is not None
		}
		for pt in self.cfg.all_points():
			fx = self.effects.get(pt)
			if fx is None:
				continue
			for access in fx.accesses:
				if access.loan is None:
					continue
				loan_var = self._var(RefId.loan(access.loan))
				root_var = self._binding_vars.get(access.place.root)
				if root_var is not None and access.place.through_deref():
					self._add(loan_var, root_var, access.span)
			for call in fx.calls:
				sig = call.signature
				sig.validate(self.types)
				for idx, (ty, arg) in enumerate(zip(sig.param_types, call.args)):
					inst = self._instance(call, ty, idx)
					if inst is None:
						continue
					for ref in self._source_vars(arg, pt):
						self._add(inst, ref, call.span)
					self._relate_nested(call, ty, self._holder_vars(arg, pt))
				for a, b in sig.outlives:
					ia = self._universal(STATIC_REGION) if a == STATIC_REGION else self._var(RefId.call(call.key, a))
					ib = self._universal(STATIC_REGION) if b == STATIC_REGION else self._var(RefId.call(call.key, b))
					self._add(ib, ia, call.span)
			for flow in fx.flows:
				dest = self._binding_vars.get(flow.dest.root)
				if dest is None:
					continue
				for ref in self._source_vars(flow.value, pt):
					self._add(dest, ref, flow.span)

	# Solving -------------------------------------------------------------------

	def solve(self) -> RegionSolution:
		self._declare_universals()
		self._declare_locals(self._liveness())
		self._generate()
		all_points = frozenset(self.cfg.all_points())
		points: Dict[RefId, Set[Point]] = {ref: set(seed) for ref, seed in self._seeds.items()}
		ends: Dict[RefId, Set[str]] = {ref: set() for ref in self._seeds}
		for name in self._universals:
			ref = RefId.universal(name)
			points[ref] = set(all_points)
			ends[ref] = {name}
		edges: Dict[RefId, List[Constraint]] = {}
		for c in self.constraints:
			edges.setdefault(c.sub, []).append(c)
			points.setdefault(c.sup, set())
			ends.setdefault(c.sup, set())
		causes: Dict[Tuple[RefId, str], Span] = {}
		budget = IterationBudget("region inference", self.max_iterations)
		worklist: Deque[RefId] = deque(sorted(points))
		queued: Set[RefId] = set(worklist)
		while worklist:
			budget.tick()
			sub = worklist.popleft()
			queued.discard(sub)
			for c in edges.get(sub, ()):
				new_points = points[sub] - points[c.sup]
				new_ends = ends[sub] - ends[c.sup]
				if not new_points and not new_ends:
					continue
				points[c.sup] |= new_points
				for marker in sorted(new_ends):
					ends[c.sup].add(marker)
					causes.setdefault((c.sup, marker), causes.get((sub, marker)) or c.span)
				if c.sup not in queued:
					queued.add(c.sup)
					worklist.append(c.sup)
		logger.debug(
			"region inference for %s: %d variables, %d constraints, %d steps",
			self.fn.name,
			len(points),
			len(self.constraints),
			budget.steps,
		)
		extents = {ref: RegionExtent(frozenset(points[ref]), frozenset(ends[ref])) for ref in sorted(points)}
		return RegionSolution(
			self.fn,
			self.cfg,
			self.effects,
			extents,
			dict(self._binding_vars),
			tuple(self._universals),
			outlives_closure(self.fn.region_params, [*self.fn.outlives, *self._implied]),
			{k: v for k, v in causes.items() if v.is_known},
		)


def solve_regions(
	cfg: Cfg,
	fn: T.TFunction,
	types: TypeTable,
	effects: Mapping[Point, StatementEffects],
	signature: FnSignature,
	*,
	max_iterations: Optional[int] = None,
) -> RegionSolution:
	return RegionSolver(cfg, fn, types, effects, signature, max_iterations=max_iterations).solve()


__all__ = [
	"RefId",
	"RegionExtent",
	"Constraint",
	"RegionSolution",
	"RegionSolver",
	"outlives_closure",
	"solve_regions",
]
