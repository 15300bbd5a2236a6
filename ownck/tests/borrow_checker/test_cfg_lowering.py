#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""CFG lowering of branches, loops, matches and early exits."""

import pytest

from ownck.borrowck.cfg import Cfg, StorageDead, build_cfg
from ownck.borrowck.verifier import prepare_function
from ownck.core.errors import IRContractError
from ownck.ir import nodes as T
from ownck.test_helpers import parse


def _cfg(src: str, name: str = "f") -> Cfg:
	program = parse(src)
	fn = program.function(name)
	prepare_function(fn, program.types)
	return build_cfg(fn)


def _dead_names(stmts) -> list[str]:
	return [s.name for s in stmts if isinstance(s, StorageDead)]


def test_straight_line_ends_scopes_at_exit():
	cfg = _cfg("fn f(p: Int) { let a = 1; let b = 2; }")
	entry = cfg.block(cfg.entry)
	assert [type(s) for s in entry.statements[:2]] == [T.TLet, T.TLet]
	# Innermost first: locals in reverse declaration order, then parameters.
	assert _dead_names(entry.statements) == ["b", "a", "p"]
	assert entry.terminator.kind == "jump"
	assert entry.terminator.targets == [cfg.exit]
	assert cfg.block(cfg.exit).terminator.kind == "return"
	assert cfg.unreachable == set()


def test_if_produces_branch_and_join():
	cfg = _cfg("fn f(c: Bool) { if c { let y = 1; } use_int(2); }")
	term = cfg.block(cfg.entry).terminator
	assert term.kind == "branch"
	assert [e.label for e in term.edges] == ["then", "else"]
	then_bb, else_bb = term.targets
	assert _dead_names(cfg.block(then_bb).statements) == ["y"]
	join = cfg.successors(then_bb)
	assert join == cfg.successors(else_bb)
	assert sorted(cfg.predecessors(join[0])) == sorted([then_bb, else_bb])


def test_loop_has_header_and_back_edge():
	cfg = _cfg(
		"""
fn f(c: Bool) {
	loop {
		if c { break; }
	}
}
"""
	)
	headers = cfg.loop_headers()
	assert len(headers) == 1
	header = headers[0]
	assert any(target == header for _, target in cfg.back_edges)
	assert cfg.is_reachable(header)
	# The exit of the loop is reached through `break`.
	assert cfg.is_reachable(cfg.exit)


def test_infinite_loop_never_reaches_exit():
	cfg = _cfg("fn f() { loop { } }")
	assert not cfg.is_reachable(cfg.exit)


def test_while_desugars_to_loop_with_break():
	program = parse("fn f(c: Bool) { while c { use_int(1); } }")
	body = program.function("f").body.statements
	assert isinstance(body[0], T.TLoop)
	cond = body[0].body.statements[0]
	assert isinstance(cond, T.TIf)
	assert isinstance(cond.else_block.statements[0], T.TBreak)


def test_code_after_return_is_unreachable():
	cfg = _cfg("fn f() { return; let x = 1; }")
	dead = [cfg.block(b) for b in cfg.unreachable]
	assert any(blk.has_user_statements() for blk in dead)


def test_return_assigns_return_slot():
	cfg = _cfg("fn f() -> Int { let v = 1; return v; }")
	stmts = cfg.block(cfg.entry).statements
	assign = next(s for s in stmts if isinstance(s, T.TAssign))
	assert assign.target.binding_id == T.RETURN_BINDING
	assert _dead_names(stmts) == ["v"]


def test_match_has_one_edge_per_arm():
	cfg = _cfg(
		"""
fn f(o: Opt) {
	match o {
		Some(ref r) => { inspect(r); },
		None => {},
	}
}
"""
	)
	term = cfg.block(cfg.entry).terminator
	assert term.kind == "switch"
	assert [e.label for e in term.edges] == ["Some", "None"]
	some_bb = cfg.block(term.targets[0])
	bind = some_bb.statements[0]
	assert isinstance(bind, T.TLet) and bind.name == "r"
	assert isinstance(bind.value, T.TBorrow)
	assert isinstance(bind.value.subject, T.TVariantField)
	# Every arm meets in a single join block.
	assert len({tuple(cfg.successors(t)) for t in term.targets}) == 1


def test_continue_jumps_back_to_header():
	cfg = _cfg(
		"""
fn f(c: Bool) {
	loop {
		let x = 1;
		if c { continue; }
		break;
	}
}
"""
	)
	header = cfg.loop_headers()[0]
	continue_edges = [
		blk.id
		for blk in cfg.blocks
		if blk.terminator is not None and any(e.label == "continue" for e in blk.terminator.edges)
	]
	assert continue_edges
	src = cfg.block(continue_edges[0])
	assert src.terminator.targets == [header]
	# Leaving the loop body scope through `continue` ends `x`.
	assert _dead_names(src.statements) == ["x"]


def test_break_outside_loop_is_contract_error():
	with pytest.raises(IRContractError):
		_cfg("fn f() { break; }")


def test_dump_mentions_flags():
	text = _cfg("fn f() { return; use_int(1); }").dump()
	assert "entry" in text
	assert "exit" in text
	assert "unreachable" in text
