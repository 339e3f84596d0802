# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest

from rsbundle.core.errors import UnresolvedReferenceError
from rsbundle.module_graph import NS_MACRO, NS_VALUE, ItemId
from rsbundle.resolve import NS_PLAIN, Resolver

GCD = ItemId(("algorist", "math", "gcd"), "gcd", NS_VALUE)


@pytest.fixture
def resolver(project) -> Resolver:
	project.write("src/lib.rs", "pub mod math;\npub mod io;\npub use math::gcd::gcd;\n")
	project.write(
		"src/math/mod.rs",
		"""
pub mod gcd;
pub fn lcm(a: u64, b: u64) -> u64 { a / gcd::gcd(a, b) * b }
pub fn h() -> u64 {
    use crate::math::lcm as l;
    l(1, 2)
}
""",
	)
	project.write(
		"src/math/gcd.rs",
		"""
pub fn gcd(a: u64, b: u64) -> u64 { if b == 0 { a } else { gcd(b, a % b) } }
pub fn via_super() -> u64 { super::lcm(2, 3) }
""",
	)
	project.write(
		"src/io.rs",
		"""
use std::io::BufRead;
pub struct Scanner;
impl Scanner { pub fn new() -> Self { Scanner } }
#[macro_export]
macro_rules! wln { ($w:expr) => { writeln!($w).unwrap() }; }
""",
	)
	project.write("src/bin/a.rs", "use algorist::gcd;\nfn main() { gcd(1, 2); }\n")
	return Resolver(project.tree())


def test_reexport_chain_resolves_to_the_definition(resolver) -> None:
	r = resolver.resolve_path(("bin",), ("gcd",), NS_PLAIN)

	assert r.items == (GCD,)
	assert r.consumed == 1
	assert r.via is not None and r.via.module == ("bin",)


def test_crate_name_and_crate_heads_are_anchored(resolver) -> None:
	r = resolver.resolve_path(("bin",), ("algorist", "math", "lcm"), NS_PLAIN)
	assert r.items == (ItemId(("algorist", "math"), "lcm", NS_VALUE),)
	assert r.anchored

	r = resolver.resolve_path(("algorist", "io"), ("crate", "gcd"), NS_PLAIN)
	assert r.items == (GCD,)
	assert r.consumed == 2


def test_self_and_super_walk_the_module_tree(resolver) -> None:
	r = resolver.resolve_path(("algorist", "math", "gcd"), ("super", "lcm"), NS_PLAIN)
	assert r.items == (ItemId(("algorist", "math"), "lcm", NS_VALUE),)

	r = resolver.resolve_path(("algorist", "math"), ("self", "gcd", "gcd"), NS_PLAIN)
	assert r.items == (GCD,)
	assert r.consumed == 3

	with pytest.raises(UnresolvedReferenceError, match="past the crate root"):
		resolver.resolve_path(("algorist",), ("super", "x"), NS_PLAIN)


def test_associated_names_are_not_consumed(resolver) -> None:
	r = resolver.resolve_path(("algorist",), ("io", "Scanner", "new"), NS_PLAIN)

	assert r.items[0].name == "Scanner"
	assert r.consumed == 2


def test_external_imports_and_unknown_heads(resolver) -> None:
	r = resolver.resolve_path(("algorist", "io"), ("BufRead",), NS_PLAIN)
	assert r.external == ("std", "io", "BufRead")
	assert r.direct

	r = resolver.resolve_path(("bin",), ("Vec", "new"), NS_PLAIN)
	assert r.unresolved
	assert not r.found


def test_failed_walk_inside_the_library_is_an_error(resolver) -> None:
	with pytest.raises(UnresolvedReferenceError) as exc:
		resolver.resolve_path(("bin",), ("algorist", "nope"), NS_PLAIN, file="src/bin/a.rs", line=3, column=5)

	err = exc.value
	assert err.reason_code == "E-UNRESOLVED"
	assert err.symbol == "algorist::nope"
	assert (err.file, err.line, err.column) == ("src/bin/a.rs", 3, 5)


def test_exported_macros_live_at_the_library_root(resolver) -> None:
	wln = ItemId(("algorist", "io"), "wln", NS_MACRO)

	assert resolver.resolve_path(("bin",), ("algorist", "wln"), NS_MACRO).items == (wln,)
	assert resolver.resolve_path(("bin",), ("wln",), NS_MACRO).items == (wln,)


def test_body_level_use_binds_inside_the_item(resolver) -> None:
	tree = resolver.tree
	item = tree.items[ItemId(("algorist", "math"), "h", NS_VALUE)]
	site = next(s for s in item.references() if s.symbol == "l")

	r = resolver.resolve_site(item, site)

	assert r.items == (ItemId(("algorist", "math"), "lcm", NS_VALUE),)
	assert r.via is not None and r.via.item == item.id


def test_glob_imports_must_agree(project) -> None:
	project.write(
		"src/lib.rs",
		"""
pub mod a { pub fn f() {} }
pub mod b { pub fn f() {} }
pub mod c { pub use super::a::f; }
""",
	)
	project.write("src/bin/a.rs", "use algorist::a::*;\nuse algorist::c::*;\nfn main() { f(); }\n")
	resolver = Resolver(project.tree())

	assert resolver.resolve_path(("bin",), ("f",), NS_PLAIN).items == (ItemId(("algorist", "a"), "f", NS_VALUE),)

	project.write("src/bin/a.rs", "use algorist::a::*;\nuse algorist::b::*;\nfn main() { f(); }\n")
	resolver = Resolver(project.tree())

	with pytest.raises(UnresolvedReferenceError, match="ambiguous"):
		resolver.resolve_path(("bin",), ("f",), NS_PLAIN)
