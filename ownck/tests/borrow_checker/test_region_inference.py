#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Region constraint generation, solving and validity checks."""

import pytest

from ownck.borrowck.accesses import LoanKey, collect_effects
from ownck.borrowck.cfg import Point, build_cfg
from ownck.borrowck.regions import RefId, RegionExtent, outlives_closure, solve_regions
from ownck.borrowck.verifier import prepare_function
from ownck.core.errors import IRContractError
from ownck.ir.signatures import STATIC_REGION
from ownck.test_helpers import check_fn, parse


def _solve(src: str, name: str = "f"):
	program = parse(src)
	fn = program.function(name)
	prepare_function(fn, program.types)
	signatures = program.signature_table()
	cfg = build_cfg(fn)
	effects = collect_effects(cfg, fn, program.types, signatures)
	return cfg, fn, solve_regions(cfg, fn, program.types, effects, signatures[name])


def _binding_id(fn, name: str) -> int:
	return next(b.binding_id for b in fn.bindings.values() if b.name == name)


def test_outlives_closure_is_transitive_and_static_outlives_all():
	closure = outlives_closure(("'a", "'b", "'c"), (("'a", "'b"), ("'b", "'c")))
	assert ("'a", "'c") in closure
	assert ("'c", "'a") not in closure
	assert (STATIC_REGION, "'c") in closure
	assert ("'b", "'b") in closure


def test_refid_rendering():
	key = LoanKey(Point(2, 3), 1)
	assert str(RefId.loan(key)) == "loan@bb2[3]#1"
	assert str(RefId.call(key, "'a")) == "'a@bb2[3]#1"
	assert str(RefId.universal("'a")) == "'a"
	assert str(RefId.binding(4, "r")) == "r"


def test_extent_describe():
	ext = RegionExtent(frozenset({Point(0, 1), Point(0, 0)}), frozenset({"'a"}))
	assert ext.describe() == "{bb0[0], bb0[1]} + end('a)"
	assert Point(0, 1) in ext
	assert Point(1, 0) not in ext


def test_local_reference_extent_is_its_liveness():
	cfg, fn, solution = _solve(
		"""
fn f() {
	let x = 1;
	let r = &x;
	read(r);
	use_int(x);
}
"""
	)
	ext = solution.binding_extent(_binding_id(fn, "r"))
	assert ext is not None
	assert Point(cfg.entry, 2) in ext
	assert Point(cfg.entry, 3) not in ext
	assert ext.ends == frozenset()


def test_parameter_regions_are_universal():
	cfg, fn, solution = _solve(
		"""
fn f<'a>(p: &'a Int, q: &Int) {
	read(p);
}
"""
	)
	assert solution.universals == (STATIC_REGION, "'a", "'_q")
	p_ext = solution.binding_extent(_binding_id(fn, "p"))
	assert p_ext.points == frozenset(cfg.all_points())
	assert p_ext.ends == frozenset({"'a"})


def test_loan_flows_into_returned_region():
	cfg, fn, solution = _solve(
		"""
fn f(p: &Pair) -> &Int {
	return &(*p).b;
}
"""
	)
	loan_ext = next(ext for name, ext in solution.region_map().items() if name.startswith("loan@"))
	assert loan_ext.ends == frozenset({"'_p"})
	assert loan_ext.points == frozenset(cfg.all_points())


def test_unbound_return_region_is_contract_error():
	res = check_fn(
		"""
fn f(a: &Int, b: &Int) -> &Int {
	return a;
}
"""
	)
	assert not res.accepted
	assert res.contract_error is not None
	assert "cannot be elided" in res.contract_error


def test_undeclared_region_in_signature_is_contract_error():
	with pytest.raises(IRContractError):
		_solve("fn f(p: &'a Int) { }")


def test_static_result_forces_local_borrow_to_outlive_function():
	res = check_fn(
		"""
extern fn keep(r: &'static Int);

fn f() {
	let x = 1;
	keep(&x);
}
"""
	)
	assert res.kinds() == ["DanglingReference"]


def test_call_outlives_relation_is_instantiated():
	res = check_fn(
		"""
extern fn link<'a, 'b: 'a>(a: &'a Int, b: &'b Int) -> &'a Int;

fn f<'x, 'y>(p: &'x Int, q: &'y Int) -> &'x Int {
	return link(p, q);
}
"""
	)
	assert res.kinds() == ["DanglingReference"]
	assert "requires 'y: 'x" in res.diagnostics[0].message


def test_call_outlives_relation_satisfied_by_caller():
	res = check_fn(
		"""
extern fn link<'a, 'b: 'a>(a: &'a Int, b: &'b Int) -> &'a Int;

fn f<'x, 'y: 'x>(p: &'x Int, q: &'y Int) -> &'x Int {
	return link(p, q);
}
"""
	)
	assert res.accepted, res.diagnostics


def test_struct_cannot_outlive_captured_local():
	res = check_fn(
		"""
struct Holder<'a> { r: &'a Int }

fn f() -> Holder<'static> {
	let x = 1;
	return new Holder { r: &x };
}
"""
	)
	assert res.kinds() == ["DanglingReference"]


STASH = """
struct Holder<'a> { r: &'a Int }
extern fn stash<'a>(dst: &mut Holder<'a>, r: &'a Int);
"""


def test_reference_stored_through_argument_stays_borrowed():
	res = check_fn(
		STASH
		+ """
fn f() {
	let seed = 0;
	let x = 1;
	let mut h = new Holder { r: &seed };
	stash(&mut h, &x);
	x = 2;
	read(h.r);
}
"""
	)
	assert res.kinds() == ["UseWhileBorrowed"]
	assert "'x'" in res.diagnostics[0].message


def test_reference_stored_through_argument_ends_with_holder():
	res = check_fn(
		STASH
		+ """
fn f() {
	let seed = 0;
	let x = 1;
	let mut h = new Holder { r: &seed };
	stash(&mut h, &x);
	read(h.r);
	x = 2;
}
"""
	)
	assert res.accepted, res.diagnostics


def test_local_stored_into_callers_holder_dangles():
	res = check_fn(
		STASH
		+ """
fn f<'b>(h: &mut Holder<'b>) {
	let x = 1;
	stash(h, &x);
}
"""
	)
	assert res.kinds() == ["DanglingReference"]


def test_nested_region_of_parameter_is_implied_to_outlive_it():
	res = check_fn(
		STASH
		+ """
fn f<'b>(h: &mut Holder<'b>, y: &'b Int) {
	stash(h, y);
}
"""
	)
	assert res.accepted, res.diagnostics


def test_unrelated_region_stored_through_parameter_is_rejected():
	res = check_fn(
		STASH
		+ """
fn f<'b, 'c>(h: &mut Holder<'b>, y: &'c Int) {
	stash(h, y);
}
"""
	)
	assert res.kinds() == ["DanglingReference"]
	assert "requires 'c: '_h" in res.diagnostics[0].message


def test_nested_region_of_returned_reference_keeps_data_borrowed():
	res = check_fn(
		"""
struct Holder<'a> { r: &'a Int }
extern fn peek<'a>(h: &Holder<'a>) -> &'a Int;

fn f() {
	let x = 1;
	let h = new Holder { r: &x };
	let r = peek(&h);
	x = 2;
	read(r);
}
"""
	)
	assert res.kinds() == ["UseWhileBorrowed"]
