# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest

from rsbundle.config import BundleOptions, crate_name_from_manifest, resolve_options
from rsbundle.core.errors import NameCollisionError, ParseError, UnresolvedModuleError
from rsbundle.loader import load_sources
from rsbundle.module_graph import NS_IMPL, NS_MACRO, NS_TYPE, NS_VALUE, ItemId, ItemKind

ENTRY = "fn main() {}\n"


def test_graph_mirrors_module_files(project) -> None:
	project.write("src/lib.rs", "pub mod io;\npub mod math;\n")
	project.write("src/io/mod.rs", "pub struct Scanner;\n")
	project.write("src/math/mod.rs", "pub mod gcd;\n")
	project.write("src/math/gcd.rs", "pub fn gcd(a: u64, b: u64) -> u64 { a + b }\n")
	project.write("src/bin/a.rs", ENTRY)

	tree = project.tree()

	assert list(tree.modules) == [
		("algorist",),
		("algorist", "io"),
		("algorist", "math"),
		("algorist", "math", "gcd"),
		("bin",),
	]
	assert tree.modules[("algorist", "math", "gcd")].file == "src/math/gcd.rs"
	assert tree.modules[("algorist", "math", "gcd")].parent == ("algorist", "math")
	assert ItemId(("algorist", "math", "gcd"), "gcd", NS_VALUE) in tree.items
	assert tree.entry_point() == ItemId(("bin",), "main", NS_VALUE)


def test_items_get_namespaced_identities(project) -> None:
	project.write(
		"src/lib.rs",
		"""
pub struct Mint(pub u64);
pub trait Zero { fn zero() -> Self; }
impl Zero for Mint { fn zero() -> Self { Mint(0) } }
impl Mint { pub fn get(&self) -> u64 { self.0 } }
#[macro_export]
macro_rules! zero_impl { ($t:ident) => { impl Zero for $t { fn zero() -> Self { 0 } } }; }
zero_impl!(u64);
""",
	)
	project.write("src/bin/a.rs", ENTRY)

	tree = project.tree()
	root = ("algorist",)
	kinds = {item_id: item.kind for item_id, item in tree.items.items() if item_id.module == root}

	assert kinds == {
		ItemId(root, "Mint", NS_TYPE): ItemKind.TYPE,
		ItemId(root, "Zero", NS_TYPE): ItemKind.TRAIT,
		ItemId(root, "impl#0", NS_IMPL): ItemKind.IMPL,
		ItemId(root, "impl#1", NS_IMPL): ItemKind.IMPL,
		ItemId(root, "zero_impl", NS_MACRO): ItemKind.MACRO,
		ItemId(root, "zero_impl!#0", NS_IMPL): ItemKind.EXPANSION,
	}
	mint = tree.items[ItemId(root, "Mint", NS_TYPE)]
	assert mint.namespaces == {NS_TYPE, NS_VALUE}
	assert tree.exported_macros() == {"zero_impl": ItemId(root, "zero_impl", NS_MACRO)}
	assert tree.items[ItemId(root, "zero_impl", NS_MACRO)].provides() == [("Zero",)]


def test_use_declarations_become_import_edges(project) -> None:
	project.write("src/lib.rs", "pub mod io;\npub use io::Scanner;\nuse std::collections::*;\n")
	project.write("src/io.rs", "pub struct Scanner;\n")
	project.write("src/bin/a.rs", ENTRY)

	tree = project.tree()
	edges = tree.modules[("algorist",)].imports

	assert [(e.name, e.path, e.glob, e.pub) for e in edges] == [
		("Scanner", ("io", "Scanner"), False, True),
		(None, ("std", "collections"), True, False),
	]
	assert edges[0].render() == "use io::Scanner;"
	assert edges[1].render() == "use std::collections::*;"


def test_inline_modules_and_path_attribute(project) -> None:
	project.write(
		"src/lib.rs",
		"""
pub mod outer {
    pub mod deep {
        pub fn f() {}
    }
}
#[path = "impls/fast_io.rs"]
pub mod fio;
""",
	)
	project.write("src/impls/fast_io.rs", "pub fn read() {}\n")
	project.write("src/bin/a.rs", ENTRY)

	tree = project.tree()

	assert ItemId(("algorist", "outer", "deep"), "f", NS_VALUE) in tree.items
	assert tree.modules[("algorist", "outer", "deep")].file == "src/lib.rs"
	assert tree.modules[("algorist", "fio")].file == "src/impls/fast_io.rs"


def test_test_only_items_are_dropped(project) -> None:
	project.write(
		"src/lib.rs",
		"""
pub fn used() {}

#[cfg(test)]
mod tests;

#[test]
fn check() {}
""",
	)
	project.write("src/bin/a.rs", ENTRY)

	tree = project.tree()

	assert ("algorist", "tests") not in tree.modules
	assert [i.name for i in tree.items.values() if i.module == ("algorist",)] == ["used"]


def test_entry_side_modules_are_loaded_next_to_the_entry(project) -> None:
	project.write("src/lib.rs", "")
	project.write("src/bin/a.rs", "mod helper;\nfn main() { helper::go(); }\n")
	project.write("src/bin/helper.rs", "pub fn go() {}\n")

	tree = project.tree()

	assert tree.modules[("bin", "helper")].file == "src/bin/helper.rs"


def test_missing_module_file_is_unresolved(project) -> None:
	project.write("src/lib.rs", "pub mod missing;\n")
	project.write("src/bin/a.rs", ENTRY)

	with pytest.raises(UnresolvedModuleError) as exc:
		project.tree()

	assert exc.value.reason_code == "E-MODULE"
	assert exc.value.file == "src/lib.rs"
	assert exc.value.symbol == "algorist::missing"


def test_module_backed_by_two_files_is_ambiguous(project) -> None:
	project.write("src/lib.rs", "pub mod io;\n")
	project.write("src/io.rs", "pub fn a() {}\n")
	project.write("src/io/mod.rs", "pub fn b() {}\n")
	project.write("src/bin/a.rs", ENTRY)

	with pytest.raises(UnresolvedModuleError, match="both"):
		project.tree()


def test_duplicate_definition_is_a_collision(project) -> None:
	project.write("src/lib.rs", "pub fn f() {}\npub fn f() {}\n")
	project.write("src/bin/a.rs", ENTRY)

	with pytest.raises(NameCollisionError) as exc:
		project.tree()

	assert exc.value.symbol == "algorist::f"
	assert exc.value.line == 2


def test_same_name_in_type_and_value_namespaces_is_allowed(project) -> None:
	project.write("src/lib.rs", "pub struct Size { pub n: usize }\npub fn Size() -> Size { Size { n: 0 } }\n")
	project.write("src/bin/a.rs", ENTRY)

	tree = project.tree()

	assert ItemId(("algorist",), "Size", NS_TYPE) in tree.items
	assert ItemId(("algorist",), "Size", NS_VALUE) in tree.items


def test_loader_errors(project) -> None:
	project.write("src/lib.rs", "")
	with pytest.raises(UnresolvedModuleError, match="entry file"):
		load_sources(resolve_options(project.options("nope")))

	project.write("src/bin/a.rs", ENTRY)
	(project.root / "src" / "broken.rs").write_bytes(b"fn f() { \xff }\n")
	with pytest.raises(ParseError, match="UTF-8"):
		load_sources(resolve_options(project.options()))


def test_loader_normalizes_bom_and_crlf(project) -> None:
	project.write("src/lib.rs", "")
	(project.root / "src" / "bin").mkdir(parents=True)
	(project.root / "src" / "bin" / "a.rs").write_bytes(b"\xef\xbb\xbffn main() {\r\n}\r\n")

	loaded = load_sources(resolve_options(project.options()))

	assert loaded.files["src/bin/a.rs"].text == "fn main() {\n}\n"


def test_crate_name_precedence(project) -> None:
	manifest = project.root / "Cargo.toml"
	assert crate_name_from_manifest(manifest) == "algorist"

	manifest.write_text('[package]\nname = "contest-lib"\n\n[lib]\nname = "cl"\n', encoding="utf-8")
	assert crate_name_from_manifest(manifest) == "cl"

	manifest.write_text('[package]\nname = "contest-lib"\n', encoding="utf-8")
	assert crate_name_from_manifest(manifest) == "contest_lib"
	assert resolve_options(project.options()).crate_name == "contest_lib"
	assert resolve_options(project.options(crate_name="mine")).crate_name == "mine"

	manifest.unlink()
	assert resolve_options(project.options()).crate_name == "algorist"


def test_invalid_problem_ids_are_rejected() -> None:
	for bad in ("", "../x", "a/b", "a.rs", ".."):
		with pytest.raises(ValueError):
			resolve_options(BundleOptions(problem_id=bad))
