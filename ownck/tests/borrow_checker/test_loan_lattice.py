#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Borrow state lattice: loans in scope and conflict reporting."""

from ownck.borrowck.accesses import collect_effects
from ownck.borrowck.cfg import Point, build_cfg
from ownck.borrowck.loans import BorrowLattice, LoanKind, _overwrite_spares
from ownck.borrowck.place import DerefProj, FieldProj, Place
from ownck.borrowck.regions import solve_regions
from ownck.borrowck.verifier import prepare_function
from ownck.core.diagnostics import DiagnosticSink
from ownck.test_helpers import check_fn, parse


def _lattice(src: str, name: str = "f"):
	program = parse(src)
	fn = program.function(name)
	prepare_function(fn, program.types)
	signatures = program.signature_table()
	cfg = build_cfg(fn)
	effects = collect_effects(cfg, fn, program.types, signatures)
	solution = solve_regions(cfg, fn, program.types, effects, signatures[name])
	sink = DiagnosticSink()
	return cfg, BorrowLattice(cfg, effects, solution, sink).run(), sink


def test_loan_leaves_scope_after_last_use_of_reference():
	cfg, loans, sink = _lattice(
		"""
fn f() {
	let x = 1;
	let r = &x;
	read(r);
	use_int(x);
}
"""
	)
	assert len(sink) == 0
	(loan,) = loans.loans.values()
	assert loan.kind is LoanKind.SHARED
	assert loan.origin == Point(cfg.entry, 1)
	assert loan in loans.live_at(Point(cfg.entry, 2))
	assert loan not in loans.live_at(Point(cfg.entry, 3))


def test_overwrite_spares_data_behind_reference():
	r = Place(1, (), "r")
	x = Place(2, (), "x")
	assert _overwrite_spares(r, Place(1, (DerefProj(), FieldProj("a")), "r"))
	assert not _overwrite_spares(x, x)
	assert not _overwrite_spares(x, Place(2, (FieldProj("a"),), "x"))


def test_reassigning_reference_keeps_reborrowed_data():
	res = check_fn(
		"""
fn f(r0: &mut Pair, other: &mut Pair) {
	let mut r = r0;
	let a = &mut (*r).a;
	r = other;
	write(a);
}
"""
	)
	assert res.accepted, res.diagnostics


def test_loan_from_either_branch_survives_join():
	res = check_fn(
		"""
fn f(c: Bool) {
	let mut x = 1;
	let y = 2;
	let mut r = &x;
	if c {
		r = &y;
	}
	x = 3;
	read(r);
}
"""
	)
	assert res.kinds() == ["UseWhileBorrowed"]


def test_fresh_borrow_each_iteration():
	res = check_fn(
		"""
fn f(c: Bool) {
	let mut x = 1;
	while c {
		write(&mut x);
	}
	use_int(x);
}
"""
	)
	assert res.accepted, res.diagnostics


def test_reborrow_in_loop_replaces_previous_loan():
	res = check_fn(
		"""
fn f(c: Bool) {
	let mut x = 1;
	let mut m = &mut x;
	while c {
		write(m);
		m = &mut x;
	}
}
"""
	)
	assert res.accepted, res.diagnostics


def test_loan_carried_around_loop_conflicts():
	res = check_fn(
		"""
fn f(c: Bool) {
	let mut x = 1;
	let r = &x;
	while c {
		x = x + 1;
		read(r);
	}
}
"""
	)
	assert res.kinds() == ["UseWhileBorrowed"]


def test_two_arguments_of_one_call_conflict():
	res = check_fn(
		"""
extern fn both(a: &mut Int, b: &Int);

fn f() {
	let mut x = 1;
	both(&mut x, &x);
}
"""
	)
	assert res.kinds() == ["ConflictingBorrow"]


def test_shared_loan_does_not_block_reads():
	res = check_fn(
		"""
fn f() {
	let x = 1;
	let r = &x;
	use_int(x);
	read(r);
}
"""
	)
	assert res.accepted
