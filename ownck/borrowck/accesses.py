# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Per-statement effects shared by every dataflow pass.

Each CFG point is reduced once to a `StatementEffects` record:
  * `accesses`: the ordered list of place accesses the statement performs
    (reads, moves, writes, borrows, binding initialization, storage end);
  * `flows`: which value flows into which destination place (for region
    constraints);
  * `calls`: call sites with their argument values and callee signature.

The move tracker and the borrow lattice only look at `accesses`; the region
solver uses all three. Keeping a single walker guarantees the passes agree on
evaluation order and on the identity of every loan (`LoanKey`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Union

from ownck.core.errors import IRContractError
from ownck.core.span import Span
from ownck.core.types_core import TypeId, TypeTable
from ownck.ir import nodes as T
from ownck.ir.signatures import FnSignature, SignatureTable

from .cfg import Cfg, Point, StorageDead, Terminator
from .place import DerefProj, DowncastProj, FieldProj, IndexProj, Place, place_from_expr


class AccessKind(Enum):
	READ = auto()           # by-value use of a duplicable place (copy), or a shallow read
	MOVE = auto()           # by-value use of a move-only place
	WRITE = auto()          # assignment to a place
	BORROW_SHARED = auto()  # `&place`
	BORROW_MUT = auto()     # `&mut place`
	INSPECT = auto()        # read of a variant discriminant (`match`)
	INIT = auto()           # `let x = ...`: the binding becomes initialized
	DECLARE = auto()        # `let x;`: the binding exists but is uninitialized
	STORAGE_DEAD = auto()   # scope end: storage of the binding is released


@dataclass(frozen=True, order=True)
class LoanKey:
	"""Identity of one borrow expression: its point and evaluation ordinal."""

	point: Point
	ordinal: int

	def __str__(self) -> str:
		return f"{self.point}#{self.ordinal}"


@dataclass(frozen=True)
class Access:
	kind: AccessKind
	place: Place
	span: Span
	ty: Optional[TypeId] = None
	loan: Optional[LoanKey] = None

	@property
	def is_borrow(self) -> bool:
		return self.kind in (AccessKind.BORROW_SHARED, AccessKind.BORROW_MUT)


# Value sources (what a computed value may carry references from)

@dataclass(frozen=True)
class FromLoan:
	loan: LoanKey


@dataclass(frozen=True)
class FromPlace:
	"""The value was read (copied/moved) out of `place`."""
	place: Place


@dataclass(frozen=True)
class FromCall:
	call: LoanKey


@dataclass(frozen=True)
class FromAggregate:
	"""A struct/variant value built at `key` from parts that carry references."""
	key: LoanKey
	parts: tuple["Value", ...]


Source = Union[FromLoan, FromPlace, FromCall, FromAggregate]


@dataclass(frozen=True)
class Value:
	sources: tuple[Source, ...] = ()

	@property
	def carries_refs(self) -> bool:
		return bool(self.sources)


EMPTY = Value()


@dataclass(frozen=True)
class Flow:
	"""`value` is stored into `dest` (whole binding or a projection of it)."""
	dest: Place
	value: Value
	span: Span


@dataclass(frozen=True)
class CallSite:
	key: LoanKey
	signature: FnSignature
	args: tuple[Value, ...]
	span: Span


@dataclass
class StatementEffects:
	accesses: List[Access] = field(default_factory=list)
	flows: List[Flow] = field(default_factory=list)
	calls: List[CallSite] = field(default_factory=list)


class PlaceTyper:
	"""Type places by walking projections from the root binding's declared type."""

	def __init__(self, fn: T.TFunction, types: TypeTable) -> None:
		self.fn = fn
		self.types = types

	def binding(self, binding_id: T.BindingId, loc: Span | None = None) -> T.TBinding:
		b = self.fn.bindings.get(binding_id)
		if b is None:
			raise IRContractError(f"reference to undeclared binding #{binding_id} in '{self.fn.name}'", loc=loc)
		return b

	def type_of(self, place: Place, loc: Span | None = None) -> TypeId:
		ty = self.binding(place.root, loc).ty
		pending_variant: Optional[str] = None
		for proj in place.projections:
			nxt: Optional[TypeId]
			if isinstance(proj, DowncastProj):
				pending_variant = proj.variant
				continue
			if isinstance(proj, FieldProj):
				if pending_variant is not None:
					nxt = self.types.variant_field_type(ty, pending_variant, proj.name)
					pending_variant = None
				else:
					nxt = self.types.field_type(ty, proj.name)
			elif isinstance(proj, IndexProj):
				nxt = self.types.element_type(ty)
			elif isinstance(proj, DerefProj):
				nxt = self.types.pointee(ty)
			else:  # pragma: no cover - Projection is closed
				nxt = None
			if nxt is None:
				raise IRContractError(
					f"ill-typed place '{place.render()}' ({self.types.describe(ty)} has no {proj.render()})",
					loc=loc,
				)
			ty = nxt
		if pending_variant is not None:
			raise IRContractError(f"downcast without payload field in '{place.render()}'", loc=loc)
		return ty


class EffectCollector:
	"""Reduce statements/terminators to `StatementEffects`."""

	def __init__(self, fn: T.TFunction, types: TypeTable, signatures: SignatureTable) -> None:
		self.fn = fn
		self.types = types
		self.signatures = signatures
		self.typer = PlaceTyper(fn, types)
		self._point = Point(0, 0)
		self._ordinal = 0
		self._fx = StatementEffects()

	def collect(self, point: Point, item: Union[T.TStmt, Terminator]) -> StatementEffects:
		self._point = point
		self._ordinal = 0
		self._fx = StatementEffects()
		if isinstance(item, Terminator):
			self._terminator(item)
		else:
			self._statement(item)
		return self._fx

	def _next_key(self) -> LoanKey:
		key = LoanKey(self._point, self._ordinal)
		self._ordinal += 1
		return key

	def _span(self, node: object, fallback: Span) -> Span:
		loc = getattr(node, "loc", None)
		if isinstance(loc, Span) and loc.is_known:
			return loc
		return fallback

	def _access(
		self,
		kind: AccessKind,
		place: Place,
		span: Span,
		*,
		loan: Optional[LoanKey] = None,
	) -> None:
		ty = self.typer.type_of(place, span)
		self._fx.accesses.append(Access(kind, place, span, ty, loan))

	# Statements ----------------------------------------------------------------

	def _statement(self, stmt: T.TStmt) -> None:
		if isinstance(stmt, StorageDead):
			self.typer.binding(stmt.binding_id, stmt.loc)
			self._fx.accesses.append(Access(AccessKind.STORAGE_DEAD, Place(stmt.binding_id, (), stmt.name), stmt.loc))
			return
		if isinstance(stmt, T.TLet):
			dest = Place(stmt.binding_id, (), stmt.name)
			if stmt.value is None:
				self._access(AccessKind.DECLARE, dest, stmt.loc)
				return
			value = self._operand(stmt.value, stmt.loc)
			self._access(AccessKind.INIT, dest, stmt.loc)
			self._fx.flows.append(Flow(dest, value, stmt.loc))
			return
		if isinstance(stmt, T.TAssign):
			target = place_from_expr(stmt.target)
			if target is None:
				raise IRContractError("assignment target is not a place expression", loc=stmt.loc)
			value = self._operand(stmt.value, stmt.loc)
			self._index_operands(stmt.target, stmt.loc)
			self._access(AccessKind.WRITE, target, self._span(stmt.target, stmt.loc))
			self._fx.flows.append(Flow(target, value, stmt.loc))
			return
		if isinstance(stmt, T.TExprStmt):
			self._operand(stmt.expr, stmt.loc)
			return
		raise IRContractError(f"unexpected statement {type(stmt).__name__} in CFG", loc=getattr(stmt, "loc", None))

	def _terminator(self, term: Terminator) -> None:
		if term.kind == "branch" and term.cond is not None:
			self._operand(term.cond, term.loc)
		elif term.kind == "switch" and term.scrutinee is not None:
			place = place_from_expr(term.scrutinee)
			if place is None:
				raise IRContractError("match scrutinee must be a place expression", loc=term.loc)
			self._index_operands(term.scrutinee, term.loc)
			self._access(AccessKind.INSPECT, place, self._span(term.scrutinee, term.loc))

	# Expressions ---------------------------------------------------------------

	def _index_operands(self, expr: T.TExpr, fallback: Span) -> None:
		"""Evaluate index expressions nested in a place expression (outermost base first)."""
		if isinstance(expr, (T.TField, T.TDeref, T.TVariantField)):
			self._index_operands(expr.subject, fallback)
		elif isinstance(expr, T.TIndex):
			self._index_operands(expr.subject, fallback)
			self._operand(expr.index, fallback)

	def _operand(self, expr: T.TExpr, fallback: Span) -> Value:
		"""Evaluate `expr` by value, recording accesses; return what it may carry refs from."""
		span = self._span(expr, fallback)
		if isinstance(expr, T.PLACE_EXPRS):
			place = place_from_expr(expr)
			assert place is not None
			self._index_operands(expr, span)
			ty = self.typer.type_of(place, span)
			kind = AccessKind.READ if self.types.is_copy(ty) else AccessKind.MOVE
			self._fx.accesses.append(Access(kind, place, span, ty))
			if self.types.carries_refs(ty):
				return Value((FromPlace(place),))
			return EMPTY
		if isinstance(expr, T.TBorrow):
			place = place_from_expr(expr.subject)
			if place is None:
				raise IRContractError("cannot borrow a non-place expression", loc=span)
			self._index_operands(expr.subject, span)
			key = self._next_key()
			kind = AccessKind.BORROW_MUT if expr.mutable else AccessKind.BORROW_SHARED
			self._access(kind, place, span, loan=key)
			return Value((FromLoan(key),))
		if isinstance(expr, (T.TLiteralInt, T.TLiteralBool, T.TUnit)):
			return EMPTY
		if isinstance(expr, T.TUnary):
			self._operand(expr.operand, span)
			return EMPTY
		if isinstance(expr, T.TBinary):
			self._operand(expr.left, span)
			self._operand(expr.right, span)
			return EMPTY
		if isinstance(expr, T.TCall):
			sig = self.signatures.require(expr.callee, loc=span)
			if len(sig.param_types) != len(expr.args):
				raise IRContractError(
					f"call to '{expr.callee}' passes {len(expr.args)} arguments, signature expects {len(sig.param_types)}",
					loc=span,
				)
			args = tuple(self._operand(a, span) for a in expr.args)
			key = self._next_key()
			self._fx.calls.append(CallSite(key, sig, args, span))
			if self.types.carries_refs(sig.return_type):
				return Value((FromCall(key),))
			return EMPTY
		if isinstance(expr, T.TStructInit):
			parts = tuple(self._operand(f.value, span) for f in expr.fields)
			return self._aggregate(parts)
		if isinstance(expr, T.TVariantInit):
			parts = tuple(self._operand(a, span) for a in expr.args)
			return self._aggregate(parts)
		raise IRContractError(f"unsupported expression {type(expr).__name__}", loc=span)

	def _aggregate(self, parts: tuple[Value, ...]) -> Value:
		carrying = tuple(p for p in parts if p.carries_refs)
		if not carrying:
			return EMPTY
		return Value((FromAggregate(self._next_key(), carrying),))


def collect_effects(
	cfg: Cfg,
	fn: T.TFunction,
	types: TypeTable,
	signatures: SignatureTable,
) -> Dict[Point, StatementEffects]:
	"""Effects for every point of every reachable block."""
	collector = EffectCollector(fn, types, signatures)
	out: Dict[Point, StatementEffects] = {}
	for bid in cfg.reachable_blocks():
		blk = cfg.block(bid)
		for idx, stmt in enumerate(blk.statements):
			pt = Point(bid, idx)
			out[pt] = collector.collect(pt, stmt)
		term_pt = Point(bid, len(blk.statements))
		if blk.terminator is not None:
			out[term_pt] = collector.collect(term_pt, blk.terminator)
		else:
			out[term_pt] = StatementEffects()
	return out


__all__ = [
	"AccessKind",
	"Access",
	"LoanKey",
	"FromLoan",
	"FromPlace",
	"FromCall",
	"FromAggregate",
	"Value",
	"Flow",
	"CallSite",
	"StatementEffects",
	"PlaceTyper",
	"EffectCollector",
	"collect_effects",
]
