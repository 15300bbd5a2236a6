# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Typed IR consumed by the borrow checker.

Pipeline placement:
  front-end → type checker → typed IR (this file) → borrowck → codegen

The IR is a *sugar-free*, already type-checked tree. `for`/`while` loops are
desugared into `TLoop` + `TIf` + `TBreak`; pattern matching is reduced to
`TMatch` over a variant-typed place with one arm per variant. Every local,
parameter and match binding is resolved to a `BindingId` recorded in the
function's binding table, and every binding carries its declared type.

Guiding rules:
- Place expressions (`TVar`, `TField`, `TIndex`, `TDeref`, `TVariantField`)
  are the only addressable expressions; everything else is an rvalue.
- Expression types are derived from binding types and projections; the IR
  does not annotate every expression.
- Each `TBlock` is a lexical scope: bindings declared directly in it die at
  its end.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Tuple

from ownck.core.span import Span
from ownck.core.types_core import TypeId

BindingId = int

# Binding id reserved for the synthetic return slot of every function.
RETURN_BINDING: BindingId = 0


class TNode:
	"""Base class for all IR nodes."""


class TExpr(TNode):
	"""Base class for all IR expressions."""
	pass


class TStmt(TNode):
	"""Base class for all IR statements."""
	pass


class UnaryOp(Enum):
	NEG = auto()
	NOT = auto()


class BinaryOp(Enum):
	ADD = auto()
	SUB = auto()
	MUL = auto()
	DIV = auto()
	EQ = auto()
	NE = auto()
	LT = auto()
	LE = auto()
	GT = auto()
	GE = auto()
	AND = auto()
	OR = auto()


class BindingKind(Enum):
	PARAM = auto()
	LOCAL = auto()
	RETURN = auto()


# Place expressions

@dataclass
class TVar(TExpr):
	"""Reference to a resolved binding."""
	name: str
	binding_id: BindingId
	loc: Span = field(default_factory=Span)


@dataclass
class TField(TExpr):
	"""Struct field access `subject.name`."""
	subject: TExpr
	name: str
	loc: Span = field(default_factory=Span)


@dataclass
class TIndex(TExpr):
	"""Array element access `subject[index]`."""
	subject: TExpr
	index: TExpr
	loc: Span = field(default_factory=Span)


@dataclass
class TDeref(TExpr):
	"""Dereference `*subject` of a reference-typed place."""
	subject: TExpr
	loc: Span = field(default_factory=Span)


@dataclass
class TVariantField(TExpr):
	"""Payload field of a variant (`subject as Variant`).field; produced by match lowering."""
	subject: TExpr
	variant: str
	field: str
	loc: Span = field(default_factory=Span)


# Rvalues

@dataclass
class TBorrow(TExpr):
	"""Borrow `&subject` / `&mut subject`; subject must be a place expression."""
	subject: TExpr
	mutable: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class TLiteralInt(TExpr):
	value: int
	loc: Span = field(default_factory=Span)


@dataclass
class TLiteralBool(TExpr):
	value: bool
	loc: Span = field(default_factory=Span)


@dataclass
class TUnit(TExpr):
	loc: Span = field(default_factory=Span)


@dataclass
class TUnary(TExpr):
	op: UnaryOp
	operand: TExpr
	loc: Span = field(default_factory=Span)


@dataclass
class TBinary(TExpr):
	op: BinaryOp
	left: TExpr
	right: TExpr
	loc: Span = field(default_factory=Span)


@dataclass
class TCall(TExpr):
	"""
	Call through a signature.

	`callee` names an entry in the signature table. Calls through an interface
	(dynamic dispatch) use the interface method's signature name; the engine
	never looks at a callee body either way.
	"""
	callee: str
	args: List[TExpr] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class TFieldInit:
	name: str
	value: TExpr


@dataclass
class TStructInit(TExpr):
	"""Struct construction; `ty` is the (possibly region-instantiated) struct type."""
	ty: TypeId
	fields: List[TFieldInit] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class TVariantInit(TExpr):
	"""Variant construction `Enum::Variant(args...)`."""
	ty: TypeId
	variant: str
	args: List[TExpr] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


# Statements

@dataclass
class TBlock(TStmt):
	"""Statement list forming one lexical scope."""
	statements: List[TStmt] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class TLet(TStmt):
	"""Declare binding `binding_id`; `value=None` leaves it uninitialized."""
	name: str
	binding_id: BindingId
	value: Optional[TExpr] = None
	loc: Span = field(default_factory=Span)


@dataclass
class TAssign(TStmt):
	target: TExpr
	value: TExpr
	loc: Span = field(default_factory=Span)


@dataclass
class TExprStmt(TStmt):
	expr: TExpr
	loc: Span = field(default_factory=Span)


@dataclass
class TIf(TStmt):
	cond: TExpr
	then_block: TBlock
	else_block: Optional[TBlock] = None
	loc: Span = field(default_factory=Span)


@dataclass
class TLoop(TStmt):
	"""Infinite loop; exits only through `TBreak` or `TReturn`."""
	body: TBlock
	loc: Span = field(default_factory=Span)


@dataclass
class TBreak(TStmt):
	loc: Span = field(default_factory=Span)


@dataclass
class TContinue(TStmt):
	loc: Span = field(default_factory=Span)


@dataclass
class TReturn(TStmt):
	value: Optional[TExpr] = None
	loc: Span = field(default_factory=Span)


@dataclass
class TArmBinding:
	"""Bind payload field `field` of the matched variant to `binding_id`."""
	field: str
	name: str
	binding_id: BindingId
	by_ref: bool = False
	mutable: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class TMatchArm:
	"""One arm; `variant=None` is the wildcard arm."""
	variant: Optional[str]
	body: TBlock
	bindings: List[TArmBinding] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class TMatch(TStmt):
	"""Match on a variant-typed place expression."""
	scrutinee: TExpr
	arms: List[TMatchArm] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


# Functions / programs

@dataclass
class TBinding:
	"""Entry of a function's binding table."""
	binding_id: BindingId
	name: str
	ty: TypeId
	kind: BindingKind = BindingKind.LOCAL
	loc: Span = field(default_factory=Span)


@dataclass
class TParam:
	name: str
	binding_id: BindingId
	ty: TypeId
	loc: Span = field(default_factory=Span)


@dataclass
class TFunction:
	"""
	One function as handed over by the type checker.

	`region_params` are the explicit region parameters (`'a`), `outlives`
	holds declared `('a, 'b)` pairs meaning `'a` outlives `'b`.
	`bindings` must contain every binding referenced in the body plus the
	parameters; the return slot is added by `ensure_return_binding`.
	"""
	name: str
	params: List[TParam]
	return_type: Optional[TypeId]
	body: TBlock
	bindings: Dict[BindingId, TBinding] = field(default_factory=dict)
	region_params: Tuple[str, ...] = ()
	outlives: Tuple[Tuple[str, str], ...] = ()
	loc: Span = field(default_factory=Span)

	def __post_init__(self) -> None:
		for p in self.params:
			self.bindings.setdefault(p.binding_id, TBinding(p.binding_id, p.name, p.ty, BindingKind.PARAM, p.loc))

	def ensure_return_binding(self, unit_ty: TypeId) -> TBinding:
		"""Return (creating once) the synthetic return-slot binding."""
		existing = self.bindings.get(RETURN_BINDING)
		if existing is not None:
			return existing
		ty = self.return_type if self.return_type is not None else unit_ty
		binding = TBinding(RETURN_BINDING, "<return>", ty, BindingKind.RETURN, self.loc)
		self.bindings[RETURN_BINDING] = binding
		return binding


PLACE_EXPRS = (TVar, TField, TIndex, TDeref, TVariantField)


__all__ = [
	"BindingId",
	"RETURN_BINDING",
	"TNode",
	"TExpr",
	"TStmt",
	"UnaryOp",
	"BinaryOp",
	"BindingKind",
	"TVar",
	"TField",
	"TIndex",
	"TDeref",
	"TVariantField",
	"TBorrow",
	"TLiteralInt",
	"TLiteralBool",
	"TUnit",
	"TUnary",
	"TBinary",
	"TCall",
	"TFieldInit",
	"TStructInit",
	"TVariantInit",
	"TBlock",
	"TLet",
	"TAssign",
	"TExprStmt",
	"TIf",
	"TLoop",
	"TBreak",
	"TContinue",
	"TReturn",
	"TArmBinding",
	"TMatchArm",
	"TMatch",
	"TBinding",
	"TParam",
	"TFunction",
	"PLACE_EXPRS",
]
