# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Textual IR reader.

Parses the small surface syntax described in `grammar.lark` and produces a
`TProgram`: names are resolved to binding ids (lexically scoped, shadowing
allowed), every binding gets its declared or inferred type, and `while`
loops are desugared into `loop { if cond { body } else { break } }`.

The reader is a convenience for tests and the command-line driver; the
verifier itself only ever sees the typed IR.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from ownck.core.span import Span
from ownck.core.types_core import TypeId, TypeKind, TypeTable

from . import nodes as T
from .program import TProgram
from .signatures import FnSignature

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)


class IRSyntaxError(ValueError):
	"""
	User-facing error for malformed textual IR (syntax, unknown names, types).

	The driver converts this into a pinned parser-phase diagnostic.
	"""

	def __init__(self, message: str, *, loc: Span | None = None) -> None:
		super().__init__(message)
		self.loc = loc or Span()


_BINARY_OPS = {
	"or_": T.BinaryOp.OR,
	"and_": T.BinaryOp.AND,
	"eq": T.BinaryOp.EQ,
	"ne": T.BinaryOp.NE,
	"lt": T.BinaryOp.LT,
	"le": T.BinaryOp.LE,
	"gt": T.BinaryOp.GT,
	"ge": T.BinaryOp.GE,
	"add": T.BinaryOp.ADD,
	"sub": T.BinaryOp.SUB,
	"mul": T.BinaryOp.MUL,
	"div": T.BinaryOp.DIV,
}

_BOOL_OPS = {
	T.BinaryOp.OR,
	T.BinaryOp.AND,
	T.BinaryOp.EQ,
	T.BinaryOp.NE,
	T.BinaryOp.LT,
	T.BinaryOp.LE,
	T.BinaryOp.GT,
	T.BinaryOp.GE,
}


def _name(node: Tree) -> str:
	return node.data if isinstance(node.data, str) else node.data.value


def _trees(node: Tree, name: Optional[str] = None) -> List[Tree]:
	return [c for c in node.children if isinstance(c, Tree) and (name is None or _name(c) == name)]


def _tokens(node: Tree, type_: str) -> List[Token]:
	return [c for c in node.children if isinstance(c, Token) and c.type == type_]


def _has_token(node: Tree, type_: str) -> bool:
	return bool(_tokens(node, type_))


class _Reader:
	"""Per-source state: the type table and the callee signatures seen so far."""

	def __init__(self, filename: Optional[str]) -> None:
		self.filename = filename
		self.types = TypeTable()
		self.signatures: Dict[str, FnSignature] = {}

	def loc(self, node: object) -> Span:
		return Span.from_loc(node).with_file(self.filename)

	def error(self, message: str, node: object) -> IRSyntaxError:
		return IRSyntaxError(message, loc=self.loc(node))


class _FnContext:
	"""Name resolution and binding table for one function body."""

	def __init__(self, reader: _Reader, name: str) -> None:
		self.reader = reader
		self.types = reader.types
		self.name = name
		self.bindings: Dict[T.BindingId, T.TBinding] = {}
		self.scopes: List[Dict[str, T.BindingId]] = [{}]
		self._next_id: T.BindingId = T.RETURN_BINDING + 1

	def declare(self, name: str, ty: TypeId, kind: T.BindingKind, loc: Span) -> T.BindingId:
		bid = self._next_id
		self._next_id += 1
		self.bindings[bid] = T.TBinding(bid, name, ty, kind, loc)
		self.scopes[-1][name] = bid
		return bid

	def lookup(self, name: str, node: object) -> T.BindingId:
		for scope in reversed(self.scopes):
			if name in scope:
				return scope[name]
		raise self.reader.error(f"unknown name '{name}' in '{self.name}'", node)

	def push(self) -> None:
		self.scopes.append({})

	def pop(self) -> None:
		self.scopes.pop()


# Types ---------------------------------------------------------------------


def _build_type(reader: _Reader, node: Tree) -> TypeId:
	kind = _name(node)
	types = reader.types
	if kind == "ref_type":
		regions = _tokens(node, "REGION")
		region = regions[0].value if regions else None
		inner = _build_type(reader, _trees(node)[0])
		return types.new_ref(inner, _has_token(node, "MUT"), region)
	if kind == "array_type":
		return types.new_array(_build_type(reader, _trees(node)[0]))
	if kind == "named_type":
		name = _tokens(node, "NAME")[0].value
		region_nodes = _trees(node, "region_arg")
		region = _tokens(region_nodes[0], "REGION")[0].value if region_nodes else None
		if name == "Int":
			return types.ensure_int()
		if name == "Bool":
			return types.ensure_bool()
		if name == "Unit":
			return types.ensure_unit()
		if types.has_struct(name):
			return types.struct_type(name, region)
		if types.has_variant(name):
			return types.variant_type(name, region)
		raise reader.error(f"unknown type '{name}'", node)
	raise reader.error(f"unexpected type node '{kind}'", node)


def _build_region_params(node: Optional[Tree]) -> Tuple[Tuple[str, ...], Tuple[Tuple[str, str], ...]]:
	"""`<'a, 'b: 'a>` → (("'a", "'b"), (("'b", "'a"),))."""
	if node is None:
		return (), ()
	names: List[str] = []
	outlives: List[Tuple[str, str]] = []
	for decl in _trees(node, "region_decl"):
		regions = [t.value for t in _tokens(decl, "REGION")]
		names.append(regions[0])
		outlives.extend((regions[0], bound) for bound in regions[1:])
	return tuple(names), tuple(outlives)


# Declarations --------------------------------------------------------------


def _build_struct_def(reader: _Reader, tree: Tree) -> None:
	name = _tokens(tree, "NAME")[0].value
	fields: Dict[str, TypeId] = {}
	for decls in _trees(tree, "field_decls"):
		for decl in _trees(decls, "field_decl"):
			field_name = _tokens(decl, "NAME")[0].value
			if field_name in fields:
				raise reader.error(f"duplicate field '{field_name}' in struct '{name}'", decl)
			fields[field_name] = _build_type(reader, _trees(decl)[0])
	try:
		reader.types.declare_struct(name, fields, copy=_has_token(tree, "COPY"))
	except ValueError as exc:
		raise reader.error(str(exc), tree) from exc


def _build_enum_def(reader: _Reader, tree: Tree) -> None:
	name = _tokens(tree, "NAME")[0].value
	arms: Dict[str, List[TypeId]] = {}
	for decls in _trees(tree, "variant_decls"):
		for decl in _trees(decls, "variant_decl"):
			arm = _tokens(decl, "NAME")[0].value
			arms[arm] = [_build_type(reader, t) for t in _trees(decl)]
	try:
		reader.types.declare_variant(name, arms, copy=_has_token(tree, "COPY"))
	except ValueError as exc:
		raise reader.error(str(exc), tree) from exc


def _build_signature(reader: _Reader, tree: Tree) -> Tuple[FnSignature, List[Tuple[str, TypeId, Span]]]:
	name = _tokens(tree, "NAME")[0].value
	region_nodes = _trees(tree, "region_params")
	region_params, outlives = _build_region_params(region_nodes[0] if region_nodes else None)
	params: List[Tuple[str, TypeId, Span]] = []
	for group in _trees(tree, "params"):
		for param in _trees(group, "param"):
			pname = _tokens(param, "NAME")[0].value
			params.append((pname, _build_type(reader, _trees(param)[0]), reader.loc(param)))
	ret_nodes = _trees(tree, "ret_type")
	return_type = _build_type(reader, _trees(ret_nodes[0])[0]) if ret_nodes else None
	sig = FnSignature(
		name=name,
		param_types=tuple(ty for _, ty, _ in params),
		return_type=return_type,
		region_params=region_params,
		outlives=outlives,
		loc=reader.loc(tree),
	)
	if name in reader.signatures:
		raise reader.error(f"duplicate function '{name}'", tree)
	reader.signatures[name] = sig
	return sig, params


def _build_function(reader: _Reader, tree: Tree, sig: FnSignature, params: List[Tuple[str, TypeId, Span]]) -> T.TFunction:
	ctx = _FnContext(reader, sig.name)
	tparams: List[T.TParam] = []
	for pname, ty, loc in params:
		bid = ctx.declare(pname, ty, T.BindingKind.PARAM, loc)
		tparams.append(T.TParam(pname, bid, ty, loc))
	body = _build_block(ctx, _trees(tree, "block")[0])
	return T.TFunction(
		name=sig.name,
		params=tparams,
		return_type=sig.return_type,
		body=body,
		bindings=ctx.bindings,
		region_params=sig.region_params,
		outlives=sig.outlives,
		loc=sig.loc,
	)


# Statements ----------------------------------------------------------------


def _build_block(ctx: _FnContext, tree: Tree) -> T.TBlock:
	ctx.push()
	try:
		statements = [_build_stmt(ctx, child) for child in _trees(tree)]
	finally:
		ctx.pop()
	return T.TBlock(statements=statements, loc=ctx.reader.loc(tree))


def _build_stmt(ctx: _FnContext, tree: Tree) -> T.TStmt:
	kind = _name(tree)
	loc = ctx.reader.loc(tree)
	if kind == "let_stmt":
		return _build_let_stmt(ctx, tree)
	if kind == "assign_stmt":
		target_node, value_node = _trees(tree)
		target = _build_expr(ctx, target_node)
		if not isinstance(target, T.PLACE_EXPRS):
			raise ctx.reader.error("assignment target must be a place", target_node)
		return T.TAssign(target, _build_expr(ctx, value_node), loc=loc)
	if kind == "expr_stmt":
		return T.TExprStmt(_build_expr(ctx, _trees(tree)[0]), loc=loc)
	if kind == "if_stmt":
		return _build_if_stmt(ctx, tree)
	if kind == "loop_stmt":
		return T.TLoop(_build_block(ctx, _trees(tree)[0]), loc=loc)
	if kind == "while_stmt":
		cond_node, body_node = _trees(tree)
		cond = _build_expr(ctx, cond_node)
		body = _build_block(ctx, body_node)
		exit_block = T.TBlock([T.TBreak(loc=loc)], loc=loc)
		return T.TLoop(T.TBlock([T.TIf(cond, body, exit_block, loc=loc)], loc=loc), loc=loc)
	if kind == "break_stmt":
		return T.TBreak(loc=loc)
	if kind == "continue_stmt":
		return T.TContinue(loc=loc)
	if kind == "return_stmt":
		values = _trees(tree)
		return T.TReturn(_build_expr(ctx, values[0]) if values else None, loc=loc)
	if kind == "match_stmt":
		return _build_match_stmt(ctx, tree)
	if kind == "block":
		return _build_block(ctx, tree)
	raise ctx.reader.error(f"unexpected statement '{kind}'", tree)


def _build_let_stmt(ctx: _FnContext, tree: Tree) -> T.TLet:
	loc = ctx.reader.loc(tree)
	name = _tokens(tree, "NAME")[0].value
	children = _trees(tree)
	declared: Optional[TypeId] = None
	value: Optional[T.TExpr] = None
	for child in children:
		if _name(child) in ("ref_type", "array_type", "named_type") and declared is None and value is None:
			declared = _build_type(ctx.reader, child)
		else:
			value = _build_expr(ctx, child)
	if declared is None:
		if value is None:
			raise ctx.reader.error(f"'let {name};' needs a type annotation", tree)
		declared = _type_of(ctx, value, tree)
	# The initializer is resolved before the new name comes into scope.
	bid = ctx.declare(name, declared, T.BindingKind.LOCAL, loc)
	return T.TLet(name, bid, value, loc=loc)


def _build_if_stmt(ctx: _FnContext, tree: Tree) -> T.TIf:
	loc = ctx.reader.loc(tree)
	children = _trees(tree)
	cond = _build_expr(ctx, children[0])
	then_block = _build_block(ctx, children[1])
	else_block: Optional[T.TBlock] = None
	if len(children) > 2:
		inner = _trees(children[2])[0]
		if _name(inner) == "block":
			else_block = _build_block(ctx, inner)
		else:
			else_block = T.TBlock([_build_if_stmt(ctx, inner)], loc=ctx.reader.loc(inner))
	return T.TIf(cond, then_block, else_block, loc=loc)


def _build_match_stmt(ctx: _FnContext, tree: Tree) -> T.TMatch:
	loc = ctx.reader.loc(tree)
	children = _trees(tree)
	scrutinee = _build_expr(ctx, children[0])
	if not isinstance(scrutinee, T.PLACE_EXPRS):
		raise ctx.reader.error("match scrutinee must be a place", children[0])
	scrut_ty = _type_of(ctx, scrutinee, children[0])
	td = ctx.types.get(scrut_ty)
	if td.kind is not TypeKind.VARIANT:
		raise ctx.reader.error(f"cannot match on {ctx.types.describe(scrut_ty)}", children[0])
	arms_by_variant = ctx.types.variant_arms(td.name)
	arms: List[T.TMatchArm] = []
	for arm_node in children[1:]:
		pattern, body_node = _trees(arm_node)
		ctx.push()
		try:
			if _name(pattern) == "wildcard_pat":
				arms.append(T.TMatchArm(None, _build_block(ctx, body_node), loc=ctx.reader.loc(arm_node)))
				continue
			names = _tokens(pattern, "NAME")
			variant = names[-1].value
			if len(names) > 1 and names[0].value != td.name:
				raise ctx.reader.error(f"pattern type '{names[0].value}' does not match '{td.name}'", pattern)
			payload = arms_by_variant.get(variant)
			if payload is None:
				raise ctx.reader.error(f"'{td.name}' has no variant '{variant}'", pattern)
			subpatterns = _trees(pattern)
			if subpatterns and len(subpatterns) != len(payload):
				raise ctx.reader.error(
					f"variant '{variant}' has {len(payload)} field(s), pattern binds {len(subpatterns)}", pattern
				)
			bindings: List[T.TArmBinding] = []
			for idx, sub in enumerate(subpatterns):
				if _name(sub) == "skip_binding":
					continue
				by_ref = _has_token(sub, "REF")
				mutable = _has_token(sub, "MUT")
				bname = _tokens(sub, "NAME")[0].value
				bty = payload[idx]
				if by_ref:
					bty = ctx.types.new_ref(bty, mutable)
				bloc = ctx.reader.loc(sub)
				bid = ctx.declare(bname, bty, T.BindingKind.LOCAL, bloc)
				bindings.append(T.TArmBinding(str(idx), bname, bid, by_ref, mutable, bloc))
			body = _build_block(ctx, body_node)
			arms.append(T.TMatchArm(variant, body, bindings, loc=ctx.reader.loc(arm_node)))
		finally:
			ctx.pop()
	return T.TMatch(scrutinee, arms, loc=loc)


# Expressions ---------------------------------------------------------------


def _build_expr(ctx: _FnContext, node: Tree) -> T.TExpr:
	name = _name(node)
	loc = ctx.reader.loc(node)
	kids = _trees(node)
	if name == "int_lit":
		return T.TLiteralInt(int(node.children[0]), loc=loc)
	if name == "true_lit":
		return T.TLiteralBool(True, loc=loc)
	if name == "false_lit":
		return T.TLiteralBool(False, loc=loc)
	if name == "unit_lit":
		return T.TUnit(loc=loc)
	if name == "var":
		ident = node.children[0].value
		return T.TVar(ident, ctx.lookup(ident, node), loc=loc)
	if name == "field":
		return T.TField(_build_expr(ctx, kids[0]), _tokens(node, "NAME")[0].value, loc=loc)
	if name == "index":
		return T.TIndex(_build_expr(ctx, kids[0]), _build_expr(ctx, kids[1]), loc=loc)
	if name == "deref":
		return T.TDeref(_build_expr(ctx, kids[0]), loc=loc)
	if name == "borrow":
		subject = _build_expr(ctx, kids[0])
		if not isinstance(subject, T.PLACE_EXPRS):
			raise ctx.reader.error("only places can be borrowed", node)
		return T.TBorrow(subject, mutable=_has_token(node, "MUT"), loc=loc)
	if name == "neg":
		return T.TUnary(T.UnaryOp.NEG, _build_expr(ctx, kids[0]), loc=loc)
	if name == "not_":
		return T.TUnary(T.UnaryOp.NOT, _build_expr(ctx, kids[0]), loc=loc)
	if name in _BINARY_OPS:
		return T.TBinary(_BINARY_OPS[name], _build_expr(ctx, kids[0]), _build_expr(ctx, kids[1]), loc=loc)
	if name == "call":
		callee = _tokens(node, "NAME")[0].value
		return T.TCall(callee, _build_args(ctx, node), loc=loc)
	if name == "variant_init":
		enum_name, variant = (t.value for t in _tokens(node, "NAME"))
		if not ctx.types.has_variant(enum_name):
			raise ctx.reader.error(f"unknown enum '{enum_name}'", node)
		payload = ctx.types.variant_arms(enum_name).get(variant)
		if payload is None:
			raise ctx.reader.error(f"'{enum_name}' has no variant '{variant}'", node)
		args = _build_args(ctx, node)
		if len(args) != len(payload):
			raise ctx.reader.error(f"variant '{variant}' expects {len(payload)} argument(s)", node)
		return T.TVariantInit(ctx.types.variant_type(enum_name), variant, args, loc=loc)
	if name == "struct_init":
		struct_name = _tokens(node, "NAME")[0].value
		if not ctx.types.has_struct(struct_name):
			raise ctx.reader.error(f"unknown struct '{struct_name}'", node)
		region_nodes = _trees(node, "region_arg")
		region = _tokens(region_nodes[0], "REGION")[0].value if region_nodes else None
		layout = ctx.types.struct_fields(struct_name)
		inits: List[T.TFieldInit] = []
		for group in _trees(node, "field_inits"):
			for init in _trees(group, "field_init"):
				fname = _tokens(init, "NAME")[0].value
				if fname not in layout:
					raise ctx.reader.error(f"struct '{struct_name}' has no field '{fname}'", init)
				inits.append(T.TFieldInit(fname, _build_expr(ctx, _trees(init)[0])))
		missing = set(layout) - {i.name for i in inits}
		if missing:
			raise ctx.reader.error(f"missing field(s) {', '.join(sorted(missing))} in '{struct_name}'", node)
		return T.TStructInit(ctx.types.struct_type(struct_name, region), inits, loc=loc)
	raise ctx.reader.error(f"unexpected expression '{name}'", node)


def _build_args(ctx: _FnContext, node: Tree) -> List[T.TExpr]:
	out: List[T.TExpr] = []
	for group in _trees(node, "args"):
		out.extend(_build_expr(ctx, arg) for arg in _trees(group))
	return out


def _type_of(ctx: _FnContext, expr: T.TExpr, node: object) -> TypeId:
	"""Type of an expression, enough to give un-annotated `let`s a type."""
	types = ctx.types
	if isinstance(expr, T.TVar):
		return ctx.bindings[expr.binding_id].ty
	if isinstance(expr, (T.TField, T.TIndex, T.TDeref, T.TVariantField)):
		base = _type_of(ctx, expr.subject, node)
		if isinstance(expr, T.TField):
			ty = types.field_type(base, expr.name)
		elif isinstance(expr, T.TIndex):
			ty = types.element_type(base)
		elif isinstance(expr, T.TDeref):
			ty = types.pointee(base)
		else:
			ty = types.variant_field_type(base, expr.variant, expr.field)
		if ty is None:
			raise ctx.reader.error(f"ill-typed place expression on {types.describe(base)}", node)
		return ty
	if isinstance(expr, T.TBorrow):
		return types.new_ref(_type_of(ctx, expr.subject, node), expr.mutable)
	if isinstance(expr, T.TLiteralInt):
		return types.ensure_int()
	if isinstance(expr, T.TLiteralBool):
		return types.ensure_bool()
	if isinstance(expr, T.TUnit):
		return types.ensure_unit()
	if isinstance(expr, T.TUnary):
		return types.ensure_bool() if expr.op is T.UnaryOp.NOT else types.ensure_int()
	if isinstance(expr, T.TBinary):
		return types.ensure_bool() if expr.op in _BOOL_OPS else types.ensure_int()
	if isinstance(expr, T.TCall):
		sig = ctx.reader.signatures.get(expr.callee)
		if sig is None:
			# Unknown callee: left for the verifier to reject.
			return types.ensure_unknown()
		return sig.return_type if sig.return_type is not None else types.ensure_unit()
	if isinstance(expr, (T.TStructInit, T.TVariantInit)):
		return expr.ty
	raise ctx.reader.error(f"cannot infer the type of {type(expr).__name__}", node)


# Entry points --------------------------------------------------------------


def parse_program(source: str, *, filename: Optional[str] = None) -> TProgram:
	"""Parse textual IR into a `TProgram`; raises `IRSyntaxError`."""
	try:
		tree = _PARSER.parse(source)
	except UnexpectedInput as exc:
		loc = Span(file=filename, line=exc.line, column=exc.column)
		raise IRSyntaxError(f"syntax error: {str(exc).splitlines()[0]}", loc=loc) from exc
	reader = _Reader(filename)
	pending: List[Tuple[Tree, FnSignature, List[Tuple[str, TypeId, Span]]]] = []
	externs: List[FnSignature] = []
	for item in _trees(tree):
		kind = _name(item)
		if kind == "struct_def":
			_build_struct_def(reader, item)
		elif kind == "enum_def":
			_build_enum_def(reader, item)
		elif kind == "fn_def":
			sig, params = _build_signature(reader, _trees(item, "signature")[0])
			pending.append((item, sig, params))
		elif kind == "extern_def":
			sig, _ = _build_signature(reader, _trees(item, "signature")[0])
			externs.append(sig)
	# Bodies are built after every signature is known so calls may be forward.
	functions = [_build_function(reader, item, sig, params) for item, sig, params in pending]
	return TProgram(reader.types, functions, externs, source=filename)


def parse_program_file(path: str | Path) -> TProgram:
	p = Path(path)
	return parse_program(p.read_text(), filename=str(p))


__all__ = ["IRSyntaxError", "parse_program", "parse_program_file"]
