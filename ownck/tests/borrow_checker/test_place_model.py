#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Place overlap rules."""

from ownck.borrowck.place import (
	DerefProj,
	DowncastProj,
	FieldProj,
	IndexKind,
	IndexProj,
	Place,
	PlaceRelation,
	compare_places,
	place_from_expr,
	places_conflict,
)
from ownck.ir import nodes as T


def _p(root: int, *projs, name: str = "x") -> Place:
	return Place(root, tuple(projs), name)


def test_different_roots_are_disjoint():
	assert compare_places(_p(1), _p(2)) is PlaceRelation.DISJOINT


def test_prefix_and_extends():
	whole = _p(1)
	field = _p(1, FieldProj("a"))
	assert compare_places(whole, field) is PlaceRelation.PREFIX
	assert compare_places(field, whole) is PlaceRelation.EXTENDS
	assert places_conflict(whole, field)


def test_sibling_fields_are_disjoint():
	assert not places_conflict(_p(1, FieldProj("a")), _p(1, FieldProj("b")))


def test_nested_fields_under_disjoint_parents():
	a = _p(1, FieldProj("a"), FieldProj("x"))
	b = _p(1, FieldProj("b"), FieldProj("x"))
	assert compare_places(a, b) is PlaceRelation.DISJOINT


def test_constant_indices():
	zero = _p(1, IndexProj(IndexKind.CONST, 0))
	one = _p(1, IndexProj(IndexKind.CONST, 1))
	assert not places_conflict(zero, one)
	assert compare_places(zero, _p(1, IndexProj(IndexKind.CONST, 0))) is PlaceRelation.EQUAL


def test_unknown_index_overlaps_everything():
	anyi = _p(1, IndexProj(IndexKind.ANY))
	assert places_conflict(anyi, _p(1, IndexProj(IndexKind.CONST, 3)))
	# The walk continues past a possibly-equal index.
	assert not places_conflict(
		_p(1, IndexProj(IndexKind.ANY), FieldProj("a")),
		_p(1, IndexProj(IndexKind.CONST, 0), FieldProj("b")),
	)


def test_variant_payloads_are_disjoint():
	some = _p(1, DowncastProj("Some"), FieldProj("0"))
	other = _p(1, DowncastProj("Other"), FieldProj("0"))
	assert not places_conflict(some, other)


def test_name_does_not_affect_equality():
	assert Place(1, (), "a") == Place(1, (), "b")


def test_render():
	place = _p(3, DerefProj(), FieldProj("f"), IndexProj(IndexKind.ANY), name="r")
	assert place.render() == "(*r).f[_]"
	assert _p(2, DowncastProj("Some"), FieldProj("0"), name="o").render() == "(o as Some).0"
	assert place.through_deref()
	assert not _p(3, FieldProj("f")).through_deref()


def test_place_from_expr():
	expr = T.TIndex(T.TField(T.TDeref(T.TVar("r", 4)), "items"), T.TLiteralInt(2))
	place = place_from_expr(expr)
	assert place == _p(4, DerefProj(), FieldProj("items"), IndexProj(IndexKind.CONST, 2))
	assert place_from_expr(T.TIndex(T.TVar("v", 1), T.TVar("i", 2))).projections == (IndexProj(IndexKind.ANY),)
	assert place_from_expr(T.TLiteralInt(1)) is None
	assert place_from_expr(T.TBorrow(T.TVar("x", 1))) is None


def test_prefixes_and_parent():
	place = _p(1, FieldProj("a"), FieldProj("b"))
	assert [len(p.projections) for p in place.prefixes()] == [0, 1, 2]
	assert place.parent() == _p(1, FieldProj("a"))
	assert _p(1).parent() is None
