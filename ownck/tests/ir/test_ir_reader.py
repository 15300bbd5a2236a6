#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Textual IR reader: parsing, name resolution and type inference."""

import pytest

from ownck.core.types_core import TypeKind
from ownck.ir import nodes as T
from ownck.ir.reader import IRSyntaxError, parse_program, parse_program_file


def test_parse_declarations_and_function():
	program = parse_program(
		"""
struct Pair { a: Int, b: Int }
copy enum Flag { On, Off }
extern fn read(r: &Int);

fn f<'a>(p: &'a Pair, n: Int) -> &'a Int {
	let x = n + 1;
	return &(*p).a;
}
""",
		filename="prog.ir",
	)
	assert [fn.name for fn in program.functions] == ["f"]
	assert [sig.name for sig in program.externs] == ["read"]
	fn = program.function("f")
	assert fn.region_params == ("'a",)
	assert [p.name for p in fn.params] == ["p", "n"]
	types = program.types
	assert types.describe(fn.params[0].ty) == "&'a Pair"
	assert types.is_copy(types.variant_type("Flag"))
	assert not types.is_copy(types.struct_type("Pair"))
	let = fn.body.statements[0]
	assert isinstance(let, T.TLet)
	assert types.describe(fn.bindings[let.binding_id].ty) == "Int"
	assert let.loc.file == "prog.ir"
	assert let.loc.line == 7


def test_outlives_bounds():
	program = parse_program("fn f<'a, 'b: 'a>(x: &'a Int, y: &'b Int) { }")
	fn = program.function("f")
	assert fn.region_params == ("'a", "'b")
	assert fn.outlives == (("'b", "'a"),)


def test_shadowing_gets_fresh_binding():
	program = parse_program(
		"""
fn f() {
	let x = 1;
	{
		let x = true;
	}
	let y = x;
}
"""
	)
	fn = program.function("f")
	outer, block, y = fn.body.statements
	inner = block.statements[0]
	assert outer.binding_id != inner.binding_id
	assert y.value.binding_id == outer.binding_id
	assert program.types.describe(fn.bindings[inner.binding_id].ty) == "Bool"


def test_forward_calls_resolve():
	program = parse_program(
		"""
fn f() -> Int { return g(); }
fn g() -> Int { return 1; }
"""
	)
	assert {fn.name for fn in program.functions} == {"f", "g"}


def test_inferred_types_of_places_and_borrows():
	program = parse_program(
		"""
struct Pair { a: Int, b: Int }
fn f(p: Pair, v: [Pair]) {
	let r = &mut p.a;
	let e = v[0];
	let d = *r;
}
"""
	)
	fn = program.function("f")
	types = program.types
	by_name = {b.name: b for b in fn.bindings.values()}
	assert types.describe(by_name["r"].ty) == "&mut Int"
	assert types.describe(by_name["e"].ty) == "Pair"
	assert types.describe(by_name["d"].ty) == "Int"


def test_match_bindings():
	program = parse_program(
		"""
struct Res { id: Int }
enum Opt { Some(Res, Int), None }
fn f(o: Opt) {
	match o {
		Opt::Some(ref mut r, _) => { },
		_ => { },
	}
}
"""
	)
	match = program.function("f").body.statements[0]
	assert isinstance(match, T.TMatch)
	some, wildcard = match.arms
	assert some.variant == "Some"
	(binding,) = some.bindings
	assert (binding.field, binding.name, binding.by_ref, binding.mutable) == ("0", "r", True, True)
	assert wildcard.variant is None


def test_struct_literal_with_region():
	program = parse_program(
		"""
struct Holder<'a> { r: &'a Int }
fn f(x: &Int) {
	let h = new Holder<'static> { r: x };
}
"""
	)
	fn = program.function("f")
	let = fn.body.statements[0]
	td = program.types.get(fn.bindings[let.binding_id].ty)
	assert td.kind is TypeKind.STRUCT
	assert td.region == "'static"


@pytest.mark.parametrize(
	"source, message",
	[
		("fn f() { let y = x; }", "unknown name 'x'"),
		("fn f() { let x: Nope = 1; }", "unknown type 'Nope'"),
		("struct S { a: Int } fn f() { let s = new S { b: 1 }; }", "has no field 'b'"),
		("struct S { a: Int, b: Int } fn f() { let s = new S { a: 1 }; }", "missing field(s) b"),
		("fn f() { let x; }", "needs a type annotation"),
		("fn f() { 1 = 2; }", "assignment target must be a place"),
		("fn f() { } fn f() { }", "duplicate function 'f'"),
		("enum E { A } fn f(e: E) { match e { B => { }, } }", "has no variant 'B'"),
	],
)
def test_semantic_errors(source, message):
	with pytest.raises(IRSyntaxError) as exc:
		parse_program(source)
	assert message in str(exc.value)


def test_syntax_error_carries_location():
	with pytest.raises(IRSyntaxError) as exc:
		parse_program("fn f() {\n\tlet = 1;\n}\n", filename="bad.ir")
	assert str(exc.value).startswith("syntax error")
	assert exc.value.loc.file == "bad.ir"
	assert exc.value.loc.line == 2


def test_comments_are_ignored(tmp_path):
	path = tmp_path / "c.ir"
	path.write_text("// header\nfn f() { // trailing\n}\n")
	program = parse_program_file(path)
	assert program.source == str(path)
	assert program.function("f").body.statements == []
