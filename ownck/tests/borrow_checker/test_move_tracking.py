#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Move / initialization tracking."""

from ownck.borrowck.moves import MoveState, PlaceState, merge_place_state
from ownck.borrowck.place import FieldProj, IndexKind, IndexProj, Place
from ownck.core.span import Span
from ownck.test_helpers import check_fn


def test_merge_prefers_moved_then_uninit():
	assert merge_place_state(PlaceState.INIT, PlaceState.INIT) is PlaceState.INIT
	assert merge_place_state(PlaceState.INIT, PlaceState.UNINIT) is PlaceState.UNINIT
	assert merge_place_state(PlaceState.UNINIT, PlaceState.MOVED) is PlaceState.MOVED
	assert merge_place_state(PlaceState.INIT, PlaceState.MOVED) is PlaceState.MOVED


def test_partial_state_is_derived_from_moved_field():
	s = Place(1, (), "s")
	field = s.with_projection(FieldProj("r"))
	state = MoveState()
	state.set_init(s)
	state.set_moved(field, Span(line=3))
	assert state.lookup(s) == (PlaceState.PARTIAL, field)
	assert state.state_of(field) is PlaceState.MOVED
	assert state.state_of(s.with_projection(FieldProj("k"))) is PlaceState.INIT
	# Re-initializing the whole forgets the moved field.
	state.set_init(s)
	assert state.state_of(s) is PlaceState.INIT
	assert state.move_sites == {}


def test_merge_keeps_move_site():
	s = Place(1, (), "s")
	moved = MoveState({s: PlaceState.INIT})
	moved.set_moved(s, Span(line=7))
	kept = MoveState({s: PlaceState.INIT})
	merged = kept.merged(moved)
	assert merged.state_of(s) is PlaceState.MOVED
	assert merged.move_sites[s].line == 7


def test_copy_values_are_not_moved():
	res = check_fn(
		"""
fn f() {
	let x = 1;
	let y = x;
	use_int(x);
	use_int(y);
}
"""
	)
	assert res.accepted


def test_copy_struct_is_duplicated():
	res = check_fn(
		"""
copy struct Point { x: Int, y: Int }

fn f() {
	let p = new Point { x: 1, y: 2 };
	let q = p;
	use_int(p.x);
	use_int(q.y);
}
"""
	)
	assert res.accepted


def test_moving_a_parameter_twice():
	res = check_fn(
		"""
fn f(r: Resource) {
	consume(r);
	consume(r);
}
"""
	)
	assert res.kinds() == ["UseAfterMove"]


def test_move_on_both_branches_then_reinit():
	res = check_fn(
		"""
fn f(c: Bool) {
	let mut s = new Resource { id: 1 };
	if c {
		consume(s);
	} else {
		let t = s;
	}
	s = new Resource { id: 2 };
	consume(s);
}
"""
	)
	assert res.accepted


def test_maybe_moved_wins_over_uninit():
	res = check_fn(
		"""
fn f(c: Bool) {
	let s: Resource;
	if c {
		s = new Resource { id: 1 };
		consume(s);
	}
	consume(s);
}
"""
	)
	assert res.kinds() == ["UseAfterMove"]


def test_borrow_of_moved_value():
	res = check_fn(
		"""
fn f() {
	let s = new Resource { id: 1 };
	consume(s);
	inspect(&s);
}
"""
	)
	assert res.kinds() == ["UseAfterMove"]
	assert res.diagnostics[0].message.startswith("use after move: borrow of moved value 's'")


def test_assign_to_field_of_uninitialized_struct():
	res = check_fn(
		"""
fn f() {
	let p: Pair;
	p.a = 1;
}
"""
	)
	assert res.kinds() == ["UseOfUninitialized"]
	assert "assign to part of possibly-uninitialized 'p'" in res.diagnostics[0].message


def test_assign_to_field_of_partially_moved_struct():
	res = check_fn(
		"""
fn f() {
	let mut t = new Two { r: new Resource { id: 1 }, k: 2 };
	let m = t.r;
	t.r = new Resource { id: 3 };
	let u = t;
}
"""
	)
	assert res.accepted, res.diagnostics


def test_scope_end_uninitializes_binding():
	res = check_fn(
		"""
fn f(c: Bool) {
	loop {
		let s: Resource;
		if c {
			s = new Resource { id: 1 };
		}
		consume(s);
		break;
	}
}
"""
	)
	assert res.kinds() == ["UseOfUninitialized"]
	assert res.diagnostics[0].related[0].label == "binding 's' declared here"


def test_write_through_unknown_index_does_not_reinitialize():
	res = check_fn(
		"""
fn f(v: [Resource], i: Int, j: Int) {
	let t = v[i];
	v[j] = new Resource { id: 2 };
	consume(v[i]);
}
"""
	)
	assert res.kinds() == ["UseAfterMove"]
	assert "moved value 'v[_]'" in res.diagnostics[0].message


def test_write_through_constant_index_reinitializes():
	res = check_fn(
		"""
fn f(v: [Resource]) {
	let t = v[0];
	v[0] = new Resource { id: 2 };
	consume(v[0]);
}
"""
	)
	assert res.accepted, res.diagnostics


def test_state_keeps_moves_a_possibly_aliased_write_may_miss():
	v = Place(1, (), "v")
	some = v.with_projection(IndexProj(IndexKind.ANY))
	first = v.with_projection(IndexProj(IndexKind.CONST, 0))
	state = MoveState({v: PlaceState.INIT})
	state.set_moved(some.with_projection(FieldProj("r")), Span(line=2))
	state.set_init(some)
	state.set_init(first)
	assert state.state_of(some.with_projection(FieldProj("r"))) is PlaceState.MOVED
	assert state.state_of(first.with_projection(FieldProj("r"))) is PlaceState.MOVED


def test_move_out_of_borrowed_data_is_rejected():
	res = check_fn(
		"""
fn f(p: &Resource) {
	consume(*p);
}
"""
	)
	assert res.kinds() == ["UseWhileBorrowed"]
	assert res.diagnostics[0].message == "cannot move out of '(*p)', which is behind a reference"


def test_copy_out_of_borrowed_data_is_fine():
	res = check_fn(
		"""
fn f(p: &Pair, q: &mut Resource) {
	use_int((*p).a);
	inspect(&*q);
	inspect(&*q);
}
"""
	)
	assert res.accepted, res.diagnostics
