# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Control-flow graph for one function body.

Lowering rules:
- Straight-line statements (`TLet`, `TAssign`, `TExprStmt`) stay as they are.
- `TIf` ends the current block with a `branch` terminator (edges labelled
  `then`/`else`) and both sides meet in a join block.
- `TLoop` jumps to an empty header block marked `loop_header`; the end of the
  body and every `continue` jump back to it (back edges). `break` jumps to
  the loop exit block.
- `TMatch` ends the block with a `switch` terminator, one edge per arm
  labelled with the arm's variant. Each arm block starts by binding the
  payload fields it names, and every arm joins a single join block.
- `return e` assigns the synthetic return binding, ends every open scope and
  jumps to the single synthetic exit block.
- Leaving a lexical scope (fall-through, break, continue, return) emits
  `StorageDead` for the bindings it declared, innermost first.

Blocks that cannot be reached from the entry (code after `return`/`break`,
joins of diverging branches) are kept but flagged in `Cfg.unreachable`;
dataflow passes skip them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, NamedTuple, Optional, Set, Tuple

from ownck.core.errors import IRContractError
from ownck.core.span import Span
from ownck.ir import nodes as T

logger = logging.getLogger(__name__)


class Point(NamedTuple):
	"""A CFG point: statement `index` of `block`; `index == len(statements)` is the terminator."""

	block: int
	index: int

	def __str__(self) -> str:
		return f"bb{self.block}[{self.index}]"


@dataclass
class StorageDead(T.TStmt):
	"""Synthetic statement: the storage of `binding_id` ends here (scope exit)."""

	binding_id: T.BindingId
	name: str
	loc: Span = field(default_factory=Span)


@dataclass(frozen=True)
class Edge:
	target: int
	label: str


@dataclass
class Terminator:
	"""
	CFG terminator describing control-flow edges out of a basic block.

	kind: "jump", "branch" (reads `cond`), "switch" (inspects `scrutinee`),
	"return" (the synthetic exit) or "unreachable".
	"""

	kind: str
	edges: List[Edge] = field(default_factory=list)
	cond: Optional[T.TExpr] = None
	scrutinee: Optional[T.TExpr] = None
	loc: Span = field(default_factory=Span)

	@property
	def targets(self) -> List[int]:
		return [e.target for e in self.edges]


@dataclass
class BasicBlock:
	"""Basic block of IR statements with a single terminator."""

	id: int
	statements: List[T.TStmt] = field(default_factory=list)
	terminator: Optional[Terminator] = None
	loop_header: bool = False

	def has_user_statements(self) -> bool:
		return any(not isinstance(s, StorageDead) for s in self.statements)


@dataclass
class Cfg:
	"""Function CFG with one entry and one synthetic exit."""

	blocks: List[BasicBlock]
	entry: int
	exit: int
	back_edges: Set[Tuple[int, int]] = field(default_factory=set)
	unreachable: Set[int] = field(default_factory=set)
	_preds: Dict[int, List[int]] = field(default_factory=dict, repr=False)

	def __post_init__(self) -> None:
		self._preds = {b.id: [] for b in self.blocks}
		for blk in self.blocks:
			for succ in self.successors(blk.id):
				self._preds[succ].append(blk.id)

	def block(self, block_id: int) -> BasicBlock:
		return self.blocks[block_id]

	def successors(self, block_id: int) -> List[int]:
		term = self.blocks[block_id].terminator
		return term.targets if term else []

	def predecessors(self, block_id: int) -> List[int]:
		return list(self._preds.get(block_id, []))

	def reachable_blocks(self) -> List[int]:
		"""Reachable block ids in reverse postorder (good iteration order for forward passes)."""
		seen: Set[int] = set()
		order: List[int] = []
		stack: List[Tuple[int, Iterator[int]]] = [(self.entry, iter(self.successors(self.entry)))]
		seen.add(self.entry)
		while stack:
			bid, it = stack[-1]
			nxt = next(it, None)
			if nxt is None:
				stack.pop()
				order.append(bid)
				continue
			if nxt not in seen:
				seen.add(nxt)
				stack.append((nxt, iter(self.successors(nxt))))
		order.reverse()
		return order

	def is_reachable(self, block_id: int) -> bool:
		return block_id not in self.unreachable

	def points(self, block_id: int) -> List[Point]:
		n = len(self.blocks[block_id].statements)
		return [Point(block_id, i) for i in range(n + 1)]

	def all_points(self) -> List[Point]:
		"""Every point of every reachable block, in reverse postorder."""
		out: List[Point] = []
		for bid in self.reachable_blocks():
			out.extend(self.points(bid))
		return out

	def statement_at(self, point: Point) -> Optional[T.TStmt]:
		stmts = self.blocks[point.block].statements
		return stmts[point.index] if point.index < len(stmts) else None

	def is_terminator(self, point: Point) -> bool:
		return point.index == len(self.blocks[point.block].statements)

	def point_successors(self, point: Point) -> List[Point]:
		if not self.is_terminator(point):
			return [Point(point.block, point.index + 1)]
		return [Point(t, 0) for t in self.successors(point.block) if self.is_reachable(t)]

	def point_predecessors(self, point: Point) -> List[Point]:
		if point.index > 0:
			return [Point(point.block, point.index - 1)]
		return [
			Point(p, len(self.blocks[p].statements)) for p in self.predecessors(point.block) if self.is_reachable(p)
		]

	def loop_headers(self) -> List[int]:
		return [b.id for b in self.blocks if b.loop_header]

	def dump(self) -> str:
		"""Debug rendering, one block per paragraph."""
		lines: List[str] = []
		for blk in self.blocks:
			flags = []
			if blk.id == self.entry:
				flags.append("entry")
			if blk.id == self.exit:
				flags.append("exit")
			if blk.loop_header:
				flags.append("loop-header")
			if blk.id in self.unreachable:
				flags.append("unreachable")
			suffix = f"  ; {', '.join(flags)}" if flags else ""
			lines.append(f"bb{blk.id}:{suffix}")
			for stmt in blk.statements:
				lines.append(f"    {_stmt_summary(stmt)}")
			term = blk.terminator
			if term is not None:
				edges = ", ".join(f"{e.label} -> bb{e.target}" for e in term.edges)
				lines.append(f"    {term.kind} [{edges}]")
		return "\n".join(lines)


def _stmt_summary(stmt: T.TStmt) -> str:
	if isinstance(stmt, StorageDead):
		return f"StorageDead({stmt.name})"
	if isinstance(stmt, T.TLet):
		return f"let {stmt.name}" + (" = ..." if stmt.value is not None else "")
	if isinstance(stmt, T.TAssign):
		return "assign"
	if isinstance(stmt, T.TExprStmt):
		return "expr"
	return type(stmt).__name__


@dataclass
class _Scope:
	bindings: List[Tuple[T.BindingId, str]] = field(default_factory=list)


@dataclass
class _LoopCtx:
	header: int
	exit: int
	depth: int


class CfgBuilder:
	"""Lower a structured function body into a `Cfg`."""

	def __init__(self, fn: T.TFunction) -> None:
		self.fn = fn
		self.blocks: List[BasicBlock] = []
		self.back_edges: Set[Tuple[int, int]] = set()
		self._scopes: List[_Scope] = []
		self._loops: List[_LoopCtx] = []
		self._cur: int = -1
		self._exit: int = -1

	def build(self) -> Cfg:
		entry = self._new_block()
		self._exit = self._new_block()
		self.blocks[self._exit].terminator = Terminator(kind="return", loc=self.fn.loc)
		self._cur = entry

		fn_scope = _Scope([(p.binding_id, p.name) for p in self.fn.params])
		self._scopes.append(fn_scope)
		self._lower_stmts(self.fn.body.statements)
		# Falling off the end is an implicit value-less return.
		self._exit_scopes(0, self.fn.body.loc)
		self._jump(self._exit, "return")
		self._scopes.pop()

		cfg = Cfg(blocks=self.blocks, entry=entry, exit=self._exit, back_edges=set(self.back_edges))
		reachable = set(cfg.reachable_blocks())
		cfg.unreachable = {b.id for b in self.blocks if b.id not in reachable}
		logger.debug(
			"cfg for %s: %d blocks, %d unreachable, %d loop headers",
			self.fn.name,
			len(cfg.blocks),
			len(cfg.unreachable),
			len(cfg.loop_headers()),
		)
		return cfg

	# Block helpers -------------------------------------------------------------

	def _new_block(self, *, loop_header: bool = False) -> int:
		bb = BasicBlock(id=len(self.blocks), loop_header=loop_header)
		self.blocks.append(bb)
		return bb.id

	def _emit(self, stmt: T.TStmt) -> None:
		self.blocks[self._cur].statements.append(stmt)

	def _terminate(self, term: Terminator) -> None:
		self.blocks[self._cur].terminator = term

	def _jump(self, target: int, label: str) -> None:
		self._terminate(Terminator(kind="jump", edges=[Edge(target, label)]))
		for loop in self._loops:
			if target == loop.header:
				self.back_edges.add((self._cur, target))

	def _detach(self) -> None:
		"""Continue lowering in a fresh block with no predecessors (dead code)."""
		self._cur = self._new_block()

	# Scopes ------------------------------------------------------------------

	def _declare(self, binding_id: T.BindingId, name: str) -> None:
		self._scopes[-1].bindings.append((binding_id, name))

	def _exit_scopes(self, depth: int, loc: Span) -> None:
		"""Emit StorageDead for every scope above `depth`, innermost first."""
		for scope in reversed(self._scopes[depth:]):
			for bid, name in reversed(scope.bindings):
				self._emit(StorageDead(bid, name, loc))

	# Statement lowering --------------------------------------------------------

	def _lower_stmts(self, stmts: List[T.TStmt]) -> None:
		for stmt in stmts:
			self._lower_stmt(stmt)

	def _lower_scoped_block(self, block: T.TBlock) -> None:
		self._scopes.append(_Scope())
		self._lower_stmts(block.statements)
		self._exit_scopes(len(self._scopes) - 1, block.loc)
		self._scopes.pop()

	def _lower_stmt(self, stmt: T.TStmt) -> None:
		if isinstance(stmt, T.TLet):
			self._emit(stmt)
			self._declare(stmt.binding_id, stmt.name)
			return
		if isinstance(stmt, (T.TAssign, T.TExprStmt)):
			self._emit(stmt)
			return
		if isinstance(stmt, T.TBlock):
			self._lower_scoped_block(stmt)
			return
		if isinstance(stmt, T.TIf):
			self._lower_if(stmt)
			return
		if isinstance(stmt, T.TLoop):
			self._lower_loop(stmt)
			return
		if isinstance(stmt, (T.TBreak, T.TContinue)):
			if not self._loops:
				raise IRContractError(f"{type(stmt).__name__} outside of a loop", loc=stmt.loc)
			loop = self._loops[-1]
			self._exit_scopes(loop.depth, stmt.loc)
			if isinstance(stmt, T.TBreak):
				self._jump(loop.exit, "break")
			else:
				self._jump(loop.header, "continue")
			self._detach()
			return
		if isinstance(stmt, T.TReturn):
			if stmt.value is not None:
				ret = self.fn.bindings.get(T.RETURN_BINDING)
				name = ret.name if ret is not None else "<return>"
				self._emit(T.TAssign(target=T.TVar(name, T.RETURN_BINDING, loc=stmt.loc), value=stmt.value, loc=stmt.loc))
			self._exit_scopes(0, stmt.loc)
			self._jump(self._exit, "return")
			self._detach()
			return
		if isinstance(stmt, T.TMatch):
			self._lower_match(stmt)
			return
		raise IRContractError(f"unsupported statement {type(stmt).__name__}", loc=getattr(stmt, "loc", None))

	def _lower_if(self, stmt: T.TIf) -> None:
		then_bb = self._new_block()
		else_bb = self._new_block()
		join = self._new_block()
		self._terminate(
			Terminator(kind="branch", edges=[Edge(then_bb, "then"), Edge(else_bb, "else")], cond=stmt.cond, loc=stmt.loc)
		)
		self._cur = then_bb
		self._lower_scoped_block(stmt.then_block)
		self._jump(join, "join")
		self._cur = else_bb
		if stmt.else_block is not None:
			self._lower_scoped_block(stmt.else_block)
		self._jump(join, "join")
		self._cur = join

	def _lower_loop(self, stmt: T.TLoop) -> None:
		header = self._new_block(loop_header=True)
		body = self._new_block()
		exit_bb = self._new_block()
		self._jump(header, "loop")
		self._cur = header
		self._loops.append(_LoopCtx(header=header, exit=exit_bb, depth=len(self._scopes)))
		self._jump(body, "body")
		self._cur = body
		self._lower_scoped_block(stmt.body)
		self._jump(header, "loop")
		self._loops.pop()
		self._cur = exit_bb

	def _lower_match(self, stmt: T.TMatch) -> None:
		if not isinstance(stmt.scrutinee, T.PLACE_EXPRS):
			raise IRContractError("match scrutinee must be a place expression", loc=stmt.loc)
		if not stmt.arms:
			raise IRContractError("match without arms", loc=stmt.loc)
		join = self._new_block()
		edges: List[Edge] = []
		arm_blocks: List[int] = []
		for arm in stmt.arms:
			bb = self._new_block()
			arm_blocks.append(bb)
			edges.append(Edge(bb, arm.variant if arm.variant is not None else "_"))
		self._terminate(Terminator(kind="switch", edges=edges, scrutinee=stmt.scrutinee, loc=stmt.loc))
		for arm, bb in zip(stmt.arms, arm_blocks):
			self._cur = bb
			if arm.variant is None and arm.bindings:
				raise IRContractError("wildcard arm cannot bind payload fields", loc=arm.loc)
			self._scopes.append(_Scope())
			for binding in arm.bindings:
				payload: T.TExpr = T.TVariantField(stmt.scrutinee, arm.variant or "", binding.field, loc=binding.loc)
				if binding.by_ref:
					payload = T.TBorrow(payload, mutable=binding.mutable, loc=binding.loc)
				self._emit(T.TLet(binding.name, binding.binding_id, payload, loc=binding.loc))
				self._declare(binding.binding_id, binding.name)
			self._lower_scoped_block(arm.body)
			self._exit_scopes(len(self._scopes) - 1, arm.body.loc)
			self._scopes.pop()
			self._jump(join, "join")
		self._cur = join


def build_cfg(fn: T.TFunction) -> Cfg:
	"""Convenience wrapper around `CfgBuilder`."""
	return CfgBuilder(fn).build()


__all__ = [
	"Point",
	"StorageDead",
	"Edge",
	"Terminator",
	"BasicBlock",
	"Cfg",
	"CfgBuilder",
	"build_cfg",
]
