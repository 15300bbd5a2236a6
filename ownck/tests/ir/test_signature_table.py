#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Callee signatures: validation, return-region elision and the table."""

import pytest

from ownck.core.errors import IRContractError
from ownck.core.types_core import TypeTable
from ownck.ir.signatures import STATIC_REGION, FnSignature, SignatureTable


@pytest.fixture
def types() -> TypeTable:
	return TypeTable()


def test_undeclared_region_is_rejected(types):
	sig = FnSignature("f", (types.ensure_ref(types.ensure_int(), "'a"),))
	with pytest.raises(IRContractError) as exc:
		sig.validate(types)
	assert "undeclared region 'a" in str(exc.value)


def test_undeclared_outlives_is_rejected(types):
	sig = FnSignature("f", region_params=("'a",), outlives=(("'a", "'b"),))
	with pytest.raises(IRContractError):
		sig.validate(types)


def test_static_needs_no_declaration(types):
	sig = FnSignature("f", (types.ensure_ref(types.ensure_int(), STATIC_REGION),))
	sig.validate(types)


def test_single_reference_parameter_elides(types):
	int_ty = types.ensure_int()
	sig = FnSignature("f", (int_ty, types.ensure_ref(int_ty)), types.ensure_ref(int_ty))
	sig.validate(types)
	assert sig.elision_source(types) == 1
	assert sig.elided_return_region(types) is None


def test_same_named_region_elides(types):
	int_ty = types.ensure_int()
	a_ref = types.ensure_ref(int_ty, "'a")
	sig = FnSignature("f", (a_ref, a_ref), types.ensure_ref(int_ty), region_params=("'a",))
	sig.validate(types)
	assert sig.elided_return_region(types) == "'a"


def test_ambiguous_elision_is_rejected(types):
	int_ty = types.ensure_int()
	sig = FnSignature("f", (types.ensure_ref(int_ty), types.ensure_ref(int_ty)), types.ensure_ref(int_ty))
	assert sig.elision_source(types) is None
	with pytest.raises(IRContractError):
		sig.validate(types)


def test_no_reference_parameter_means_static(types):
	int_ty = types.ensure_int()
	sig = FnSignature("f", (int_ty,), types.ensure_ref(int_ty))
	sig.validate(types)
	assert sig.elided_return_region(types) == STATIC_REGION


def test_declared_return_region_wins(types):
	int_ty = types.ensure_int()
	sig = FnSignature(
		"f",
		(types.ensure_ref(int_ty, "'a"), types.ensure_ref(int_ty, "'b")),
		types.ensure_ref(int_ty, "'b"),
		region_params=("'a", "'b"),
	)
	sig.validate(types)
	assert sig.elided_return_region(types) == "'b"


def test_table_rejects_duplicates_and_missing_targets():
	with pytest.raises(IRContractError):
		SignatureTable([FnSignature("f"), FnSignature("f")])
	table = SignatureTable([FnSignature("f")])
	assert "f" in table
	assert len(table) == 1
	assert table.require("f").name == "f"
	with pytest.raises(IRContractError) as exc:
		table.require("g")
	assert "no signature for call target 'g'" in str(exc.value)


def test_nested_regions_are_collected_and_validated(types):
	int_ty = types.ensure_int()
	types.declare_struct("Holder", {"r": types.ensure_ref(int_ty, "'a")})
	holder_z = types.struct_type("Holder", "'z")
	dst = types.ensure_ref_mut(holder_z, "'a")
	assert types.regions_in(dst) == ("'a", "'z")
	assert types.nested_regions(dst) == ("'z",)
	assert types.nested_regions(holder_z) == ()
	sig = FnSignature("stash", (dst,), region_params=("'a",))
	with pytest.raises(IRContractError) as exc:
		sig.validate(types)
	assert "undeclared region 'z" in str(exc.value)
	FnSignature("stash", (dst,), region_params=("'a", "'z")).validate(types)
