# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Source loader.

Reads the entry file of one problem plus every `.rs` file of the library
tree, parses each of them and returns the raw, unresolved forest. This is the
only stage that reads the project; everything after works on the in-memory
snapshot.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from rsbundle.config import BundleOptions
from rsbundle.core.errors import ParseError, UnresolvedModuleError
from rsbundle.parser import ast as A
from rsbundle.parser.parser import parse_source

log = logging.getLogger(__name__)


@dataclass
class LoadedSources:
	"""Raw module forest: parsed files keyed by project-relative posix path."""

	crate_name: str
	entry_file: str
	lib_file: str
	entry_fn: str = "main"
	files: Dict[str, A.SourceFile] = field(default_factory=dict)


def module_dir_for(file: str, *, root: bool = False) -> str:
	"""Directory searched for `mod x;` declared at the top level of `file`."""
	if root or posixpath.basename(file) == "mod.rs":
		return posixpath.dirname(file)
	stem = posixpath.splitext(posixpath.basename(file))[0]
	return posixpath.join(posixpath.dirname(file), stem)


def module_file_candidates(
	mod_dir: str,
	name: str,
	*,
	path_attr: Optional[str] = None,
	decl_file: Optional[str] = None,
) -> List[str]:
	"""
	Files that may back the out-of-line module `name`.

	`#[path = "..."]` replaces the lookup and is relative to the directory of
	the declaring file (or to the inline module directory).
	"""
	if path_attr is not None:
		base = posixpath.dirname(decl_file) if decl_file is not None else mod_dir
		return [posixpath.normpath(posixpath.join(base, path_attr))]
	return [posixpath.join(mod_dir, f"{name}.rs"), posixpath.join(mod_dir, name, "mod.rs")]


def _rel(root: Path, path: Path) -> str:
	try:
		return path.resolve().relative_to(root.resolve()).as_posix()
	except ValueError:
		return path.as_posix()


def read_source(path: Path, rel: str) -> A.SourceFile:
	"""Read, decode and parse one file."""
	try:
		data = path.read_bytes()
	except OSError as err:
		raise UnresolvedModuleError(message=f"cannot read source: {err.strerror or err}", file=rel) from err
	try:
		text = data.decode("utf-8")
	except UnicodeDecodeError as err:
		raise ParseError(message="source is not valid UTF-8", file=rel) from err
	if text.startswith("\ufeff"):
		text = text[1:]
	text = text.replace("\r\n", "\n")
	return parse_source(text, rel)


def _library_paths(opts: BundleOptions) -> Iterable[Path]:
	src = opts.src_path
	bin_dir = opts.under_root(opts.bin_dir).resolve()
	main_rs = (src / "main.rs").resolve()
	for path in sorted(src.rglob("*.rs")):
		resolved = path.resolve()
		if resolved == main_rs or resolved.is_relative_to(bin_dir):
			continue
		yield path


def load_sources(opts: BundleOptions) -> LoadedSources:
	"""
	Parse the entry file, the modules it declares out of line, and the whole
	library tree.

	Raises `UnresolvedModuleError` when the entry file or the library root is
	missing and `ParseError` for the first malformed file.
	"""
	root = opts.project_root
	entry = opts.entry_path
	if not entry.is_file():
		raise UnresolvedModuleError(message=f"entry file not found for problem {opts.problem_id}", file=_rel(root, entry))
	lib = opts.lib_path
	if not lib.is_file():
		raise UnresolvedModuleError(message="library root not found", file=_rel(root, lib))

	assert opts.crate_name, "crate name must be resolved before loading"
	loaded = LoadedSources(
		crate_name=opts.crate_name,
		entry_file=_rel(root, entry),
		lib_file=_rel(root, lib),
		entry_fn=opts.entry_fn,
	)

	entry_sf = read_source(entry, loaded.entry_file)
	loaded.files[loaded.entry_file] = entry_sf
	_load_declared(root, loaded, entry_sf.items, module_dir_for(loaded.entry_file, root=True), loaded.entry_file)

	count = 0
	for path in _library_paths(opts):
		rel = _rel(root, path)
		if rel in loaded.files:
			continue
		loaded.files[rel] = read_source(path, rel)
		count += 1
	log.debug("loaded entry %s and %d library file(s)", loaded.entry_file, count)
	return loaded


def _load_declared(root: Path, loaded: LoadedSources, items: List[A.Item], mod_dir: str, decl_file: str) -> None:
	"""Read the out-of-line modules declared by entry-side items, recursively."""
	for item in items:
		if item.kind != A.MOD or item.test_only:
			continue
		if item.inline:
			_load_declared(root, loaded, item.items, posixpath.join(mod_dir, item.name), decl_file)
			continue
		for cand in module_file_candidates(mod_dir, item.name, path_attr=item.attr_path(), decl_file=decl_file):
			if cand in loaded.files:
				continue
			path = root / cand
			if not path.is_file():
				continue
			sf = read_source(path, cand)
			loaded.files[cand] = sf
			_load_declared(root, loaded, sf.items, module_dir_for(cand), cand)


__all__ = ["LoadedSources", "load_sources", "module_dir_for", "module_file_candidates", "read_source"]
