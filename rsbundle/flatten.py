# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Item collector and namespace flattener.

Collapses the reachable part of the module tree into one scope: picks an
emission name for every named item (qualifying only the names that would
clash), rewrites the reference sites the walker resolved so they keep
pointing at the same items, drops crate-internal `use` declarations and
re-emits the external ones once at the top.
"""

from __future__ import annotations

import logging
import re
import textwrap
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from rsbundle.core.errors import NameCollisionError
from rsbundle.module_graph import NS_MACRO, ImportEdge, ItemDef, ItemId, ItemKind, ModulePath, SourceTree
from rsbundle.reachability import ReachableSet, ResolvedSite
from rsbundle.references import MACRO
from rsbundle.resolve import NS_ANY, NS_PLAIN, Resolution, Resolver

log = logging.getLogger(__name__)

# Names every Rust file sees without importing them.
PRELUDE = frozenset(
	{
		"Option", "Some", "None", "Result", "Ok", "Err", "Vec", "String", "Box",
		"ToString", "ToOwned", "Clone", "Copy", "Default", "Drop", "Eq", "PartialEq",
		"Ord", "PartialOrd", "Fn", "FnMut", "FnOnce", "Iterator", "IntoIterator",
		"DoubleEndedIterator", "ExactSizeIterator", "Extend", "FromIterator", "Send",
		"Sync", "Sized", "Unpin", "AsRef", "AsMut", "Into", "From", "TryFrom",
		"TryInto", "std", "core", "alloc",
	}
)

_UNNAMED = (ItemKind.IMPL, ItemKind.EXPANSION)
_RESTRICTED_VIS = re.compile(r"pub\s*\(\s*(?:super|in\b[^)]*)\s*\)")


@dataclass(frozen=True)
class FlattenedItem:
	id: ItemId
	emit_name: Optional[str]  # None for impl blocks and macro invocations
	text: str
	module: ModulePath
	kind: str


@dataclass
class ModuleGroup:
	module: ModulePath
	items: List[FlattenedItem] = field(default_factory=list)

	@property
	def title(self) -> str:
		return "::".join(self.module)


@dataclass
class FlattenResult:
	inner_attrs: List[str] = field(default_factory=list)
	uses: List[str] = field(default_factory=list)
	macros: List[FlattenedItem] = field(default_factory=list)
	entry_items: List[FlattenedItem] = field(default_factory=list)
	groups: List[ModuleGroup] = field(default_factory=list)
	names: Dict[ItemId, str] = field(default_factory=dict)

	def items(self) -> Iterator[FlattenedItem]:
		yield from self.macros
		yield from self.entry_items
		for group in self.groups:
			yield from group.items


def qualified_name(item_id: ItemId) -> str:
	"""Disambiguated emission name: module path joined by `_`, then `__name`."""
	return "_".join(item_id.module) + "__" + item_id.name


def _join(path: Tuple[str, ...]) -> str:
	return "::".join(path)


class _Flattener:
	def __init__(self, tree: SourceTree, reach: ReachableSet, resolver: Resolver) -> None:
		self.tree = tree
		self.reach = reach
		self.resolver = resolver
		self.names: Dict[ItemId, str] = {}
		self.bindings: Dict[str, Set[Tuple[str, ...]]] = {}
		self.fixed_uses: Set[str] = set()
		self.conflicts: Set[str] = set()
		self.internal_edges: List[Tuple[ImportEdge, Resolution]] = []
		self.contributing: Set[ModulePath] = {i.module for i in reach.items}

	# ---- external bindings ----

	def edge_resolution(self, edge: ImportEdge) -> Resolution:
		return self.resolver.resolve_edge(edge, NS_PLAIN if edge.glob else NS_ANY)

	def internal_use_line(self, edge: ImportEdge, r: Resolution) -> Optional[str]:
		"""
		`use` line for an import that reaches *into* an item (enum variants,
		associated items); None when the import only named items, which now
		live at the top level anyway.
		"""
		if not r.items or (edge.glob and r.module is not None):
			return None
		if r.consumed >= len(edge.path) and not edge.glob:
			return None
		target = r.items[0]
		head = self.names.get(target, target.name)
		rest = edge.path[r.consumed :]
		path = ("crate", head) + tuple(rest)
		if edge.glob:
			return f"use {_join(path)}::*;"
		if edge.name != path[-1]:
			return f"use {_join(path)} as {edge.name};"
		return f"use {_join(path)};"

	@staticmethod
	def external_use_line(edge: ImportEdge, r: Resolution) -> str:
		assert r.external is not None
		path = _join(r.external)
		if edge.glob:
			return f"use {path}::*;"
		if edge.name != r.external[-1]:
			return f"use {path} as {edge.name};"
		return f"use {path};"

	def collect_bindings(self) -> None:
		for path, node in self.tree.modules.items():
			if path not in self.contributing:
				continue
			for edge in node.imports:
				r = self.edge_resolution(edge)
				if r.external is not None:
					if edge.glob or edge.name == "_":
						self.fixed_uses.add(self.external_use_line(edge, r))
					else:
						assert edge.name is not None
						self.bindings.setdefault(edge.name, set()).add(r.external)
				elif r.items and r.items[0] in self.reach.items and (edge.glob or r.consumed < len(edge.path)):
					self.internal_edges.append((edge, r))
				else:
					log.debug("dropping crate-internal import in %s: %s", _join(path), edge.render())
			for ext in node.externs:
				if ext.name == self.tree.crate_name:
					continue
				alias = f" as {ext.alias}" if ext.alias else ""
				self.fixed_uses.add(f"extern crate {ext.name}{alias};")
		for item_id in self.reach.order:
			for rs in self.reach.sites.get(item_id, ()):
				r = rs.resolution
				if r.external is None or not r.direct or r.via is None or r.via.item is not None:
					continue
				segs = rs.site.segments
				head_path = r.external[: len(r.external) - (len(segs) - 1)]
				self.bindings.setdefault(segs[0], set()).add(head_path)
		self.conflicts = {name for name, paths in self.bindings.items() if len(paths) > 1}

	def external_names(self) -> Set[str]:
		names = {name for name in self.bindings if name not in self.conflicts}
		for path in self.tree.modules:
			if path not in self.contributing:
				continue
			for ext in self.tree.modules[path].externs:
				if ext.name != self.tree.crate_name:
					names.add(ext.alias or ext.name)
		return names

	# ---- naming ----

	def assign_names(self) -> None:
		entry = self.reach.entry
		reserved = {
			NS_PLAIN: self.external_names() | (self.reach.unresolved[NS_PLAIN] & PRELUDE),
			MACRO: set(self.reach.unresolved[MACRO]),
		}
		by_name: Dict[Tuple[str, str], List[ItemId]] = {}
		named = sorted(
			(i for i in self.reach.items if self.tree.items[i].kind not in _UNNAMED),
			key=lambda i: self.tree.items[i].order,
		)
		for item_id in named:
			cls = MACRO if item_id.ns == NS_MACRO else NS_PLAIN
			by_name.setdefault((cls, item_id.name), []).append(item_id)

		for (cls, name), ids in by_name.items():
			modules = {i.module for i in ids}
			clash = len(modules) > 1 or name in reserved[cls]
			for item_id in ids:
				if clash and item_id != entry:
					self.names[item_id] = qualified_name(item_id)
				else:
					self.names[item_id] = name
		if entry.name in self.bindings:
			self.conflicts.add(entry.name)

		seen: Dict[Tuple[str, str], ItemId] = {}
		for item_id in named:
			emit = self.names[item_id]
			for ns in self.tree.items[item_id].namespaces:
				other = seen.setdefault((emit, ns), item_id)
				if other != item_id:
					item = self.tree.items[item_id]
					raise NameCollisionError(
						message=f"`{emit}` is emitted for both {other} and {item_id}",
						file=item.file,
						line=item.syntax.span.line,
						column=item.syntax.span.column,
						symbol=emit,
					)
		renamed = sum(1 for i in named if self.names[i] != i.name)
		if renamed:
			log.debug("qualified %d colliding name(s)", renamed)

	def use_lines(self) -> List[str]:
		lines = set(self.fixed_uses)
		for edge, r in self.internal_edges:
			line = self.internal_use_line(edge, r)
			if line is not None:
				lines.add(line)
		for name, paths in self.bindings.items():
			for path in paths:
				if name in self.conflicts:
					lines.add(f"use {_join(path)} as _;")
				elif path[-1] == name:
					lines.add(f"use {_join(path)};")
				else:
					lines.add(f"use {_join(path)} as {name};")
		return sorted(lines)

	# ---- rewriting ----

	def site_edit(self, rs: ResolvedSite) -> Optional[Tuple[int, int, str]]:
		site, r = rs.site, rs.resolution
		segs = site.segments
		if r.items and r.consumed == 0:
			return None
		if r.items:
			targets = [t for t in r.items if (t.ns == NS_MACRO) == (site.kind == MACRO)] or list(r.items)
			target = targets[0]
			emit = self.names.get(target, segs[r.consumed - 1])
			if site.kind == MACRO:
				repl = emit
			elif segs[0] == "$crate":
				repl = f"$crate::{emit}"
			elif r.anchored:
				repl = f"crate::{emit}"
			else:
				repl = emit
			if r.consumed == 1 and segs[0] == repl:
				return None
			return (site.start, site.prefix_end(r.consumed), repl)
		if r.external is not None:
			if segs[0] == "" and r.external == segs[1:]:
				return None
			if r.direct:
				if r.via is not None and r.via.item is None and segs[0] in self.conflicts:
					head_path = r.external[: len(r.external) - (len(segs) - 1)]
					return (site.start, site.ends[0], _join(head_path))
				return None
			return (site.start, site.ends[-1], _join(r.external))
		return None

	def local_use_edits(self, item: ItemDef) -> List[Tuple[int, int, str]]:
		edits: List[Tuple[int, int, str]] = []
		edges = self.resolver.local_imports(item)
		k = 0
		for lu in item.scan().local_uses:
			lines: List[str] = []
			internal = False
			for edge in edges[k : k + len(lu.leaves)]:
				r = self.edge_resolution(edge)
				if r.external is not None:
					lines.append(self.external_use_line(edge, r))
					continue
				internal = True
				line = self.internal_use_line(edge, r)
				if line is not None:
					lines.append(line)
			k += len(lu.leaves)
			if not internal:
				continue
			start, end = lu.start, lu.end
			if not lines:
				start, end = _swallow_line(item.text, start, end)
			edits.append((start, end, " ".join(lines)))
		return edits

	def render_item(self, item_id: ItemId) -> FlattenedItem:
		item = self.tree.items[item_id]
		syn = item.syntax
		text = item.text
		start = syn.span.start_pos or 0
		end = syn.span.end_pos or start
		edits: List[Tuple[int, int, str]] = []

		emit = self.names.get(item_id)
		if emit is not None and emit != item_id.name and syn.name_tok is not None:
			edits.append((syn.name_tok.start_pos, syn.name_tok.end_pos, emit))
		vis_at = syn.attrs[-1].span.end_pos if syn.attrs else start
		if syn.vis and _RESTRICTED_VIS.fullmatch(syn.vis):
			m = _RESTRICTED_VIS.search(text, vis_at or start, end)
			if m is not None:
				edits.append((m.start(), m.end(), "pub(crate)"))
		for rs in self.reach.sites.get(item_id, ()):
			edit = self.site_edit(rs)
			if edit is not None:
				edits.append(edit)
		edits.extend(self.local_use_edits(item))

		line_start = text.rfind("\n", 0, start) + 1
		base = line_start if not text[line_start:start].strip() else start
		out = text[base:end]
		for e_start, e_end, repl in sorted(edits, reverse=True):
			out = out[: e_start - base] + repl + out[e_end - base :]
		return FlattenedItem(
			id=item_id,
			emit_name=emit,
			text=textwrap.dedent(out).strip("\n"),
			module=item_id.module,
			kind=item.kind,
		)

	# ---- driver ----

	def run(self) -> FlattenResult:
		tree = self.tree
		for path in tree.modules:
			if path in self.contributing:
				log.debug("module: %s", _join(path))
			elif tree.is_library(path):
				log.debug("ignored module: %s", _join(path))

		self.collect_bindings()
		self.assign_names()

		result = FlattenResult(names=dict(self.names))
		result.inner_attrs = [a.text for a in tree.entry_inner_attrs if not a.compact.startswith("#![warn")]
		result.uses = self.use_lines()

		ordered = sorted(self.reach.items, key=lambda i: tree.items[i].order)
		groups: Dict[ModulePath, ModuleGroup] = {}
		for item_id in ordered:
			flat = self.render_item(item_id)
			if flat.kind == ItemKind.MACRO:
				result.macros.append(flat)
			elif item_id.module == tree.entry_root:
				result.entry_items.append(flat)
			else:
				groups.setdefault(item_id.module, ModuleGroup(item_id.module)).items.append(flat)
		result.groups = [groups[p] for p in tree.modules if p in groups]
		return result


def _swallow_line(text: str, start: int, end: int) -> Tuple[int, int]:
	"""Widen [start, end) to the whole line when nothing else is on it."""
	line_start = text.rfind("\n", 0, start) + 1
	line_end = text.find("\n", end)
	if line_end < 0:
		line_end = len(text)
	if text[line_start:start].strip() or text[end:line_end].strip():
		return start, end
	return line_start, min(line_end + 1, len(text))


def flatten(tree: SourceTree, reach: ReachableSet, resolver: Optional[Resolver] = None) -> FlattenResult:
	"""
	Flatten the reachable items of `tree` into one emission scope.

	Raises `NameCollisionError` when two items still share an emission name
	after qualification.
	"""
	result = _Flattener(tree, reach, resolver or Resolver(tree)).run()
	log.info(
		"flattened %d item(s) from %d module(s)",
		sum(1 for _ in result.items()),
		len(result.groups) + (1 if result.entry_items else 0),
	)
	return result


__all__ = ["FlattenResult", "FlattenedItem", "ModuleGroup", "PRELUDE", "flatten", "qualified_name"]
