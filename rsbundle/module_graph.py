# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Module graph builder.

Turns the raw forest produced by the loader into the `SourceTree`: one
`ModuleNode` per module path (library modules under the crate name, the
entry file under `bin`), one `ItemDef` per item, and one `ImportEdge` per
`use` binding. Re-exports stay edges; nothing is copied between modules.

No I/O happens here: out-of-line modules are looked up in the loader's
snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from rsbundle.core.errors import NameCollisionError, UnresolvedModuleError
from rsbundle.core.span import Span
from rsbundle.loader import LoadedSources, module_dir_for, module_file_candidates
from rsbundle.parser import ast as A
from rsbundle.references import (
	PATH,
	RefSite,
	ScanResult,
	capability_paths,
	defined_names,
	head_path_start,
	scan_references,
	split_impl_header,
)

log = logging.getLogger(__name__)

ModulePath = Tuple[str, ...]

NS_TYPE = "type"
NS_VALUE = "value"
NS_MACRO = "macro"
NS_IMPL = "impl"


class ItemKind:
	FUNCTION = "function"
	TYPE = "type"
	TRAIT = "trait"
	IMPL = "impl"
	CONSTANT = "constant"
	MACRO = "macro"
	EXPANSION = "expansion"


@dataclass(frozen=True, order=True)
class ItemId:
	"""Stable identity of an item: owning module, name and namespace."""

	module: ModulePath
	name: str
	ns: str

	def __str__(self) -> str:
		return "::".join(self.module + (self.name,))


@dataclass(frozen=True)
class ImplHeader:
	trait_site: Optional[RefSite]
	target_site: Optional[RefSite]
	mentions: Tuple[RefSite, ...]
	assoc_names: FrozenSet[str]


@dataclass
class ItemDef:
	id: ItemId
	kind: str
	syntax: A.Item
	file: str
	text: str  # full text of the owning file
	order: int
	visibility: Optional[str] = None
	namespaces: FrozenSet[str] = frozenset()
	macro_export: bool = False
	defines: Tuple[str, ...] = ()
	_scan: Optional[ScanResult] = field(default=None, repr=False)
	_header: Optional[ImplHeader] = field(default=None, repr=False)
	_provides: Optional[List[Tuple[str, ...]]] = field(default=None, repr=False)

	@property
	def name(self) -> str:
		return self.id.name

	@property
	def module(self) -> ModulePath:
		return self.id.module

	def scan(self) -> ScanResult:
		"""Referenced identifiers, computed on first use."""
		if self._scan is None:
			self._scan = scan_references(
				self.syntax.tokens, self.text, self.file, fn_params=self.syntax.kind == A.FN
			)
		return self._scan

	def references(self) -> List[RefSite]:
		return self.scan().sites

	def impl_header(self) -> ImplHeader:
		assert self.kind == ItemKind.IMPL, "impl_header() on a non-impl item"
		if self._header is None:
			header = self.syntax.header
			header_end = header[-1].end_pos if header else self.syntax.span.start_pos or 0
			mentions = tuple(s for s in self.references() if s.kind == PATH and s.start < header_end)
			parts = split_impl_header(header)
			by_start = {s.start: s for s in mentions}
			trait_tok = head_path_start(parts.trait_tokens)
			target_tok = head_path_start(parts.target_tokens)
			assoc = frozenset(
				sub.name for sub in self.syntax.items if sub.name is not None and sub.kind in (A.FN, A.CONST, A.TYPE_ALIAS)
			)
			self._header = ImplHeader(
				trait_site=by_start.get(trait_tok.start_pos) if trait_tok is not None else None,
				target_site=by_start.get(target_tok.start_pos) if target_tok is not None else None,
				mentions=mentions,
				assoc_names=assoc,
			)
		return self._header

	def provides(self) -> List[Tuple[str, ...]]:
		"""Capability paths implemented by the expansions of this macro."""
		if self._provides is None:
			self._provides = capability_paths(self.syntax.tokens) if self.kind == ItemKind.MACRO else []
		return self._provides


@dataclass(frozen=True)
class ImportEdge:
	"""
	A `use` binding: `name` is bound in `module` to whatever `path` resolves
	to. Globs have no name. `item` is set for `use` statements found inside
	an item's body; those bind only for that item.
	"""

	module: ModulePath
	name: Optional[str]
	path: Tuple[str, ...]
	glob: bool
	pub: bool
	file: str
	span: Span
	item: Optional[ItemId] = None

	def render(self) -> str:
		path = "::".join(self.path)
		if self.glob:
			return f"use {path}::*;"
		if self.name is not None and self.name != self.path[-1]:
			return f"use {path} as {self.name};"
		return f"use {path};"


@dataclass
class ModuleNode:
	path: ModulePath
	file: str
	parent: Optional[ModulePath] = None
	visibility: Optional[str] = None
	children: Dict[str, ModulePath] = field(default_factory=dict)
	items: List[ItemId] = field(default_factory=list)
	by_name: Dict[str, List[ItemId]] = field(default_factory=dict)
	macros: Dict[str, ItemId] = field(default_factory=dict)
	imports: List[ImportEdge] = field(default_factory=list)
	expansions: List[ItemId] = field(default_factory=list)
	externs: List[A.Item] = field(default_factory=list)
	inner_attrs: List[A.Attr] = field(default_factory=list)


@dataclass
class SourceTree:
	crate_name: str
	entry_fn: str
	entry_file: str
	entry_root: ModulePath
	modules: Dict[ModulePath, ModuleNode] = field(default_factory=dict)
	items: Dict[ItemId, ItemDef] = field(default_factory=dict)
	entry_inner_attrs: List[A.Attr] = field(default_factory=list)
	_exported: Optional[Dict[str, ItemId]] = field(default=None, repr=False)

	@property
	def lib_root(self) -> ModulePath:
		return (self.crate_name,)

	def crate_root_of(self, path: ModulePath) -> ModulePath:
		return path[:1]

	def is_library(self, path: ModulePath) -> bool:
		return path[:1] == self.lib_root

	def exported_macros(self) -> Dict[str, ItemId]:
		"""`#[macro_export]` macros of the library, by name."""
		if self._exported is None:
			self._exported = {}
			for item_id, item in self.items.items():
				if item.macro_export and self.is_library(item_id.module):
					self._exported.setdefault(item_id.name, item_id)
		return self._exported

	def entry_point(self) -> Optional[ItemId]:
		item_id = ItemId(self.entry_root, self.entry_fn, NS_VALUE)
		return item_id if item_id in self.items else None


_KIND_MAP = {
	A.FN: (ItemKind.FUNCTION, (NS_VALUE,)),
	A.STRUCT: (ItemKind.TYPE, (NS_TYPE,)),
	A.ENUM: (ItemKind.TYPE, (NS_TYPE,)),
	A.TYPE_ALIAS: (ItemKind.TYPE, (NS_TYPE,)),
	A.TRAIT: (ItemKind.TRAIT, (NS_TYPE,)),
	A.CONST: (ItemKind.CONSTANT, (NS_VALUE,)),
	A.STATIC: (ItemKind.CONSTANT, (NS_VALUE,)),
	A.MACRO_RULES: (ItemKind.MACRO, (NS_MACRO,)),
	A.IMPL: (ItemKind.IMPL, ()),
	A.MACRO_CALL: (ItemKind.EXPANSION, ()),
	A.EXTERN_BLOCK: (ItemKind.EXPANSION, ()),
}


class _GraphBuilder:
	def __init__(self, loaded: LoadedSources) -> None:
		self.loaded = loaded
		entry_root = ("bin",) if loaded.crate_name != "bin" else ("bin_",)
		self.tree = SourceTree(
			crate_name=loaded.crate_name,
			entry_fn=loaded.entry_fn,
			entry_file=loaded.entry_file,
			entry_root=entry_root,
		)
		self.order = 0
		self.used_files: Dict[str, ModulePath] = {}
		self.occupied: Dict[Tuple[ModulePath, str, str], ItemId] = {}

	def build(self) -> SourceTree:
		files = self.loaded.files
		lib = files[self.loaded.lib_file]
		self.add_module(
			self.tree.lib_root,
			self.loaded.lib_file,
			lib.items,
			lib.inner_attrs,
			module_dir_for(self.loaded.lib_file, root=True),
			parent=None,
			vis="pub",
			decl_file=self.loaded.lib_file,
		)
		entry = files[self.loaded.entry_file]
		self.tree.entry_inner_attrs = list(entry.inner_attrs)
		self.add_module(
			self.tree.entry_root,
			self.loaded.entry_file,
			entry.items,
			entry.inner_attrs,
			module_dir_for(self.loaded.entry_file, root=True),
			parent=None,
			vis=None,
			decl_file=self.loaded.entry_file,
		)
		for rel in files:
			if rel not in self.used_files:
				log.debug("source file %s is not part of the module tree", rel)
		return self.tree

	def add_module(
		self,
		path: ModulePath,
		file: str,
		items: List[A.Item],
		inner_attrs: List[A.Attr],
		mod_dir: str,
		*,
		parent: Optional[ModuleNode],
		vis: Optional[str],
		decl_file: Optional[str],
	) -> ModuleNode:
		node = ModuleNode(path=path, file=file, parent=parent.path if parent else None, visibility=vis)
		node.inner_attrs = list(inner_attrs)
		self.tree.modules[path] = node
		self.used_files.setdefault(file, path)
		if parent is not None:
			parent.children[path[-1]] = path
		counters = {ItemKind.IMPL: 0, ItemKind.EXPANSION: 0}
		for item in items:
			if item.test_only:
				log.debug("skipping test-only %s %s in %s", item.kind, item.name or "", "::".join(path))
				continue
			if item.kind == A.MOD:
				self.add_child_module(node, item, mod_dir, decl_file)
			elif item.kind == A.USE:
				for leaf in item.uses:
					node.imports.append(
						ImportEdge(
							module=path,
							name=leaf.name,
							path=leaf.path,
							glob=leaf.glob,
							pub=item.vis is not None,
							file=file,
							span=leaf.span,
						)
					)
			elif item.kind == A.EXTERN_CRATE:
				node.externs.append(item)
			else:
				self.add_item(node, item, counters)
		return node

	def add_child_module(self, node: ModuleNode, item: A.Item, mod_dir: str, decl_file: Optional[str]) -> None:
		name = item.name
		assert name is not None
		child_path = node.path + (name,)
		if name in node.children:
			raise NameCollisionError(
				message=f"module `{name}` is declared more than once",
				file=node.file,
				line=item.span.line,
				column=item.span.column,
				symbol="::".join(child_path),
			)
		if item.inline:
			self.add_module(
				child_path,
				node.file,
				item.items,
				item.inner_attrs,
				f"{mod_dir}/{name}",
				parent=node,
				vis=item.vis,
				decl_file=None,
			)
			return
		cands = module_file_candidates(mod_dir, name, path_attr=item.attr_path(), decl_file=decl_file)
		present = [c for c in cands if c in self.loaded.files]
		if not present:
			raise UnresolvedModuleError(
				message=f"module `{name}` has no source file (looked for {', '.join(cands)})",
				file=node.file,
				line=item.span.line,
				column=item.span.column,
				symbol="::".join(child_path),
			)
		if len(present) > 1:
			raise UnresolvedModuleError(
				message=f"module `{name}` is backed by both {present[0]} and {present[1]}",
				file=node.file,
				line=item.span.line,
				column=item.span.column,
				symbol="::".join(child_path),
			)
		child_file = present[0]
		if child_file in self.used_files:
			raise UnresolvedModuleError(
				message=f"{child_file} is already loaded as module {'::'.join(self.used_files[child_file])}",
				file=node.file,
				line=item.span.line,
				column=item.span.column,
				symbol="::".join(child_path),
			)
		sf = self.loaded.files[child_file]
		self.add_module(
			child_path,
			child_file,
			sf.items,
			sf.inner_attrs,
			module_dir_for(child_file),
			parent=node,
			vis=item.vis,
			decl_file=child_file,
		)

	def add_item(self, node: ModuleNode, item: A.Item, counters: Dict[str, int]) -> None:
		kind, namespaces = _KIND_MAP[item.kind]
		if item.kind == A.STRUCT and item.tuple_like:
			namespaces = (NS_TYPE, NS_VALUE)
		if kind in counters:
			k = counters[kind]
			counters[kind] = k + 1
			if kind == ItemKind.IMPL:
				name = f"impl#{k}"
			elif item.kind == A.EXTERN_BLOCK:
				name = f"extern#{k}"
			else:
				name = f"{item.name}!#{k}"
			ns = NS_IMPL
		else:
			assert item.name is not None
			name = item.name
			ns = namespaces[0]
		for other in namespaces:
			key = (node.path, name, other)
			if key in self.occupied:
				raise NameCollisionError(
					message=f"`{name}` is defined more than once in module {'::'.join(node.path)}",
					file=node.file,
					line=item.span.line,
					column=item.span.column,
					symbol="::".join(node.path + (name,)),
				)
		item_id = ItemId(node.path, name, ns)
		for other in namespaces:
			self.occupied[(node.path, name, other)] = item_id
		text = self.loaded.files[node.file].text
		self.order += 1
		item_def = ItemDef(
			id=item_id,
			kind=kind,
			syntax=item,
			file=node.file,
			text=text,
			order=self.order,
			visibility=item.vis,
			namespaces=frozenset(namespaces),
			macro_export=any(a.is_macro_export() for a in item.attrs),
			defines=self.defines(item, kind),
		)
		self.tree.items[item_id] = item_def
		node.items.append(item_id)
		if kind == ItemKind.MACRO:
			node.macros[name] = item_id
		elif kind == ItemKind.EXPANSION:
			node.expansions.append(item_id)
		elif kind != ItemKind.IMPL:
			node.by_name.setdefault(name, []).append(item_id)

	@staticmethod
	def defines(item: A.Item, kind: str) -> Tuple[str, ...]:
		"""Names an item-level invocation or an `extern` block brings into scope."""
		if item.kind == A.EXTERN_BLOCK:
			return tuple(item.declares)
		if kind == ItemKind.EXPANSION:
			return tuple(defined_names(item.args))
		return ()


def build_graph(loaded: LoadedSources) -> SourceTree:
	"""
	Build the `SourceTree` from the loaded forest.

	Raises `UnresolvedModuleError` for a `mod x;` without (or with ambiguous)
	backing source and `NameCollisionError` for duplicate definitions in one
	module.
	"""
	tree = _GraphBuilder(loaded).build()
	log.debug("module graph: %d module(s), %d item(s)", len(tree.modules), len(tree.items))
	return tree


__all__ = [
	"ImplHeader",
	"ImportEdge",
	"ItemDef",
	"ItemId",
	"ItemKind",
	"ModuleNode",
	"ModulePath",
	"NS_IMPL",
	"NS_MACRO",
	"NS_TYPE",
	"NS_VALUE",
	"SourceTree",
	"build_graph",
]
