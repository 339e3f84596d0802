# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from rsbundle.parser import ast as A
from rsbundle.parser.parser import parse_source
from rsbundle.references import (
	MACRO,
	METHOD,
	PATH,
	capability_paths,
	defined_names,
	head_path_start,
	scan_references,
	split_impl_header,
)


def _item(src: str, index: int = 0):
	sf = parse_source(src, "x.rs")
	return sf, sf.items[index]


def _sites(src: str, index: int = 0) -> list[tuple[str, str]]:
	sf, item = _item(src, index)
	res = scan_references(item.tokens, sf.text, "x.rs", fn_params=item.kind == A.FN)
	return [(s.kind, s.symbol) for s in res.sites]


def test_scan_collects_paths_methods_and_macros() -> None:
	sites = _sites(
		"""
fn solve() {
    let s = Scanner::new();
    s.read();
    crate::math::gcd(1, 2);
    wln!(w, "x");
}
"""
	)

	assert (PATH, "Scanner::new") in sites
	assert (METHOD, "read") in sites
	assert (PATH, "crate::math::gcd") in sites
	assert (MACRO, "wln") in sites
	assert (PATH, "let") not in sites
	assert all(sym != "solve" for _, sym in sites)


def test_scan_skips_keywords_primitives_fields_and_attributes() -> None:
	sites = _sites(
		"""
fn f(x: u64) -> Option<u64> {
    #[allow(unused)]
    let v: Vec<u64> = Vec::new();
    if x > 0 { Some(x) } else { None }
}
"""
	)
	symbols = [sym for _, sym in sites]

	assert "u64" not in symbols
	assert "x" not in symbols
	assert "allow" not in symbols
	assert "unused" not in symbols
	assert "if" not in symbols
	assert "Vec::new" in symbols
	assert "Option" in symbols


def test_scan_macro_body_metavariables_and_crate_paths() -> None:
	sites = _sites(
		"""
macro_rules! outer {
    ($x:expr, $t:ty) => { $crate::inner!($x) + <$t as $crate::math::Zero>::zero() };
}
"""
	)

	assert (MACRO, "$crate::inner") in sites
	assert (PATH, "$crate::math::Zero") in sites
	assert (METHOD, "zero") in sites
	assert all(sym not in ("x", "t", "expr", "ty") for _, sym in sites)


def test_scan_turbofish_stops_the_path() -> None:
	sites = _sites("fn f() { let v = parse::<u64>(\"1\"); }\n")

	assert (PATH, "parse") in sites


def test_scan_site_offsets_point_at_segments() -> None:
	src = "fn f() { crate::io::Scanner::new(); }\n"
	sf, item = _item(src)
	site = next(s for s in scan_references(item.tokens, sf.text, "x.rs").sites if s.kind == PATH)

	assert src[site.start : site.prefix_end(3)] == "crate::io::Scanner"
	assert src[site.start : site.prefix_end(4)] == "crate::io::Scanner::new"


def test_scan_records_body_level_use_statements() -> None:
	src = "fn f() {\n    use crate::io::Scanner;\n    Scanner::new();\n}\n"
	sf, item = _item(src)
	res = scan_references(item.tokens, sf.text, "x.rs")

	assert len(res.local_uses) == 1
	lu = res.local_uses[0]
	assert src[lu.start : lu.end] == "use crate::io::Scanner;"
	assert lu.leaves[0].path == ("crate", "io", "Scanner")
	assert [s.symbol for s in res.sites] == ["Scanner::new"]


def test_split_impl_header_separates_capability_and_target() -> None:
	_, impl = _item("impl<T: Ord> Pow for Vec<T> where T: Copy {}\n")
	parts = split_impl_header(impl.header)

	assert [t.value for t in parts.trait_tokens] == ["Pow"]
	assert [t.value for t in parts.target_tokens] == ["Vec", "<", "T", ">"]


def test_split_impl_header_inherent_and_higher_ranked() -> None:
	_, inherent = _item("impl<'a> Reader<'a> {}\n")
	parts = split_impl_header(inherent.header)
	assert parts.trait_tokens == ()
	assert head_path_start(parts.target_tokens).value == "Reader"

	_, hr = _item("impl<F> Apply for Wrap<F> where F: for<'a> Fn(&'a u8) {}\n")
	parts = split_impl_header(hr.header)
	assert [t.value for t in parts.trait_tokens] == ["Apply"]
	assert head_path_start(parts.target_tokens).value == "Wrap"


def test_head_path_start_skips_references() -> None:
	_, impl = _item("impl Show for &mut Grid {}\n")
	parts = split_impl_header(impl.header)

	assert head_path_start(parts.target_tokens).value == "Grid"

	_, tup = _item("impl Show for (u8, u8) {}\n")
	assert head_path_start(split_impl_header(tup.header).target_tokens) is None


def test_capability_paths_of_macro_body() -> None:
	_, mac = _item(
		"""
macro_rules! zero_impl {
    ($($t:ident)+) => {$(
        impl $crate::math::Zero for $t {
            fn zero() -> Self { 0 }
        }
    )+};
}
"""
	)

	assert capability_paths(mac.tokens) == [("$crate", "math", "Zero")]


def test_defined_names_skip_primitives_and_metavariables() -> None:
	_, call = _item("value_impl!(Mod7: u64 = 7);\n")

	assert defined_names(call.args) == ["Mod7"]


def test_scan_drops_parameters_and_pattern_bindings() -> None:
	sites = _sites(
		"""
fn twice<T: Copy>(n: u64, f: impl Fn(u64) -> u64, t: T) -> u64 {
    let lcm = 3;
    let (a, b) = (n, lcm);
    for i in 0..n { f(i); }
    let g = |x: u64| x + a;
    match Some(b) {
        Some(k) => k + g(n),
        None => gcd(a, b),
    }
}
"""
	)
	symbols = [sym for _, sym in sites]

	assert {"Copy", "Fn", "Some", "None", "gcd"} <= set(symbols)
	for local in ("T", "n", "f", "t", "lcm", "a", "b", "i", "g", "x", "k"):
		assert local not in symbols


def test_scan_local_scope_starts_after_the_let_statement() -> None:
	sites = _sites("fn f() -> u64 {\n    let gcd = gcd(4, 6);\n    gcd + 1\n}\n")

	assert sites == [(PATH, "gcd")]


def test_scan_block_scoped_binding_does_not_leak() -> None:
	sites = _sites("fn f() {\n    if true { let n = 1; consume(n); }\n    n();\n}\n")

	assert [sym for _, sym in sites] == ["consume", "n"]


def test_scan_generic_parameter_paths_become_method_names() -> None:
	sites = _sites("fn z<T: Zero>() -> T { T::zero() }\n")

	assert (PATH, "Zero") in sites
	assert (METHOD, "zero") in sites
	assert all(sym not in ("T", "T::zero") for _, sym in sites)


def test_scan_struct_shorthand_field_is_the_local() -> None:
	sites = _sites("fn new(reader: R) -> Self { Scanner { reader, buf: buf() } }\n")

	assert [sym for _, sym in sites] == ["R", "Scanner", "buf"]
