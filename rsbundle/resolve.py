# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Name resolution over the `SourceTree`.

Paths are resolved through the literal import edges written in the source:
anchored heads (`crate`, `$crate`, `self`, `super`, `::`, the library crate
name) walk the module tree directly, bare heads go through the scope of the
referencing module (local definitions, explicit imports, glob imports, and
for macros the textual and exported macro scopes). A head that resolves to
nothing is outside the library (std, locals, generic parameters) and is left
alone; a path that entered the library and then fails is an error.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from rsbundle.core.errors import UnresolvedReferenceError
from rsbundle.module_graph import (
	NS_MACRO,
	ImportEdge,
	ItemDef,
	ItemId,
	ItemKind,
	ModulePath,
	SourceTree,
)
from rsbundle.references import MACRO, RefSite

# Lookup namespaces.
NS_PLAIN = "plain"  # types, values and modules
NS_ANY = "any"  # everything, including macros (what a `use` imports)

_ANCHORS = frozenset({"crate", "$crate", "self", "super", ""})


@dataclass(frozen=True)
class Resolution:
	"""
	Outcome of resolving a path.

	`consumed` counts the leading segments that named the result; the rest are
	associated names (`Type::new`). It is 0 when the head was imported from
	inside the result (`use Dir::Up`). `via` is the import edge the head went
	through, if any.
	"""

	items: Tuple[ItemId, ...] = ()
	module: Optional[ModulePath] = None
	external: Optional[Tuple[str, ...]] = None
	consumed: int = 0
	anchored: bool = False
	via: Optional[ImportEdge] = None
	unresolved: bool = False
	direct: bool = False  # the head itself is bound to `external`

	@property
	def found(self) -> bool:
		return bool(self.items) or self.module is not None

	def key(self) -> tuple:
		return (self.items, self.module, self.external)


class Resolver:
	def __init__(self, tree: SourceTree) -> None:
		self.tree = tree
		self._cache: Dict[tuple, Optional[Resolution]] = {}
		self._active: Set[tuple] = set()
		self._local: Dict[ItemId, List[ImportEdge]] = {}

	# ---- entry points ----

	def local_imports(self, item: ItemDef) -> List[ImportEdge]:
		"""Import edges of the `use` statements inside `item`'s body."""
		edges = self._local.get(item.id)
		if edges is None:
			edges = []
			for lu in item.scan().local_uses:
				for leaf in lu.leaves:
					edges.append(
						ImportEdge(
							module=item.module,
							name=leaf.name,
							path=leaf.path,
							glob=leaf.glob,
							pub=False,
							file=item.file,
							span=leaf.span,
							item=item.id,
						)
					)
			self._local[item.id] = edges
		return edges

	def resolve_site(self, item: ItemDef, site: RefSite) -> Resolution:
		ns = NS_MACRO if site.kind == MACRO else NS_PLAIN
		return self.resolve_path(
			item.module,
			site.segments,
			ns,
			local_imports=self.local_imports(item),
			file=item.file,
			line=site.line,
			column=site.column,
		)

	def resolve_path(
		self,
		module: ModulePath,
		segs: Sequence[str],
		ns: str,
		*,
		requester: Optional[ModulePath] = None,
		local_imports: Sequence[ImportEdge] = (),
		file: Optional[str] = None,
		line: Optional[int] = None,
		column: Optional[int] = None,
	) -> Resolution:
		requester = requester if requester is not None else module
		segs = tuple(segs)
		head = segs[0]
		node = self.tree.modules[module]
		file = file or node.file
		via: Optional[ImportEdge] = None
		anchored = head in _ANCHORS
		i = 1
		if head in ("crate", "$crate"):
			cur = self.tree.crate_root_of(module)
		elif head == "self":
			cur = module
		elif head == "super":
			cur = module
			i = 0
			while i < len(segs) and segs[i] == "super":
				parent = self.tree.modules[cur].parent
				if parent is None:
					raise UnresolvedReferenceError(
						message="`super` goes past the crate root",
						file=file,
						line=line,
						column=column,
						symbol="::".join(segs),
					)
				cur = parent
				i += 1
		elif head == "":
			if len(segs) > 1 and segs[1] == self.tree.crate_name:
				cur = self.tree.lib_root
				i = 2
			else:
				return Resolution(external=segs[1:], consumed=len(segs), anchored=True)
		elif head == self.tree.crate_name and head not in node.children and head not in node.by_name:
			cur = self.tree.lib_root
			anchored = True
		else:
			single = len(segs) == 1
			r = self.lookup_scope(module, head, ns if single else NS_PLAIN, requester, local_imports)
			if r is None:
				return Resolution(unresolved=True)
			if r.external is not None:
				return Resolution(external=r.external + segs[1:], consumed=len(segs), via=r.via, direct=True)
			if r.items:
				if r.via is not None and not r.via.glob and r.consumed < len(r.via.path):
					# bound to something inside the item (an enum variant)
					return Resolution(items=r.items, consumed=0, via=r.via)
				return Resolution(items=r.items, consumed=1, via=r.via)
			assert r.module is not None
			cur = r.module
			via = r.via

		while i < len(segs):
			seg = segs[i]
			last = i == len(segs) - 1
			r = self.lookup_in(cur, seg, ns if last else NS_PLAIN, requester)
			if r is None:
				if last and ns != NS_ANY and self.lookup_in(cur, seg, NS_ANY, requester) is not None:
					# exists, in another namespace
					return Resolution(anchored=anchored, via=via, consumed=0)
				raise UnresolvedReferenceError(
					message=f"cannot resolve `{seg}` in `{'::'.join(cur)}`",
					file=file,
					line=line,
					column=column,
					symbol="::".join(segs),
				)
			if r.external is not None:
				return Resolution(external=r.external + segs[i + 1 :], consumed=len(segs), anchored=anchored, via=via)
			if r.items:
				return Resolution(items=r.items, consumed=i + 1, anchored=anchored, via=via)
			assert r.module is not None
			cur = r.module
			i += 1
		return Resolution(module=cur, consumed=len(segs), anchored=anchored, via=via)

	# ---- import edges ----

	def resolve_edge(self, edge: ImportEdge, ns: str = NS_ANY) -> Resolution:
		"""What a (non-glob) import binds; external when its head is outside the tree."""
		r = self.resolve_path(
			edge.module,
			edge.path,
			ns,
			requester=edge.module,
			file=edge.file,
			line=edge.span.line,
			column=edge.span.column,
		)
		if r.unresolved:
			return Resolution(external=edge.path, consumed=len(edge.path), via=edge)
		return replace(r, via=edge)

	def glob_target(self, edge: ImportEdge) -> Optional[ModulePath]:
		r = self.resolve_edge(edge, NS_PLAIN)
		return r.module

	def _visible(self, edge: ImportEdge, requester: ModulePath) -> bool:
		return edge.pub or requester[: len(edge.module)] == edge.module

	# ---- lookups ----

	def lookup_scope(
		self,
		module: ModulePath,
		name: str,
		ns: str,
		requester: ModulePath,
		local_imports: Sequence[ImportEdge] = (),
	) -> Optional[Resolution]:
		"""Unqualified lookup of `name` from inside `module` (and an item body)."""
		for edge in local_imports:
			if not edge.glob and edge.name == name:
				r = self.resolve_edge(edge, ns)
				if r.found or r.external is not None:
					return r
		found = self._glob_lookup(local_imports, name, ns, requester, module)
		if found is not None:
			return found
		return self.lookup_in(module, name, ns, requester, scope=True)

	def lookup_in(
		self,
		module: ModulePath,
		name: str,
		ns: str,
		requester: ModulePath,
		*,
		scope: bool = False,
	) -> Optional[Resolution]:
		key = (module, name, ns, requester, scope)
		if key in self._cache:
			return self._cache[key]
		if key in self._active:
			return None
		self._active.add(key)
		try:
			r = self._lookup(module, name, ns, requester, scope)
		finally:
			self._active.discard(key)
		self._cache[key] = r
		return r

	def _lookup(self, module: ModulePath, name: str, ns: str, requester: ModulePath, scope: bool) -> Optional[Resolution]:
		tree = self.tree
		node = tree.modules[module]
		items: List[ItemId] = []
		child: Optional[ModulePath] = None
		if ns != NS_MACRO:
			child = node.children.get(name)
			items.extend(node.by_name.get(name, ()))
			if not items:
				for exp in node.expansions:
					if name in tree.items[exp].defines:
						items.append(exp)
						break
		if ns != NS_PLAIN:
			macro = node.macros.get(name)
			if macro is None and module == tree.lib_root:
				macro = tree.exported_macros().get(name)
			if macro is not None:
				items.append(macro)
		if items or child is not None:
			return Resolution(items=tuple(items), module=child)

		for edge in node.imports:
			if edge.glob or edge.name != name or not self._visible(edge, requester):
				continue
			r = self.resolve_edge(edge, ns)
			if r.found or r.external is not None:
				return r

		found = self._glob_lookup([e for e in node.imports if self._visible(e, requester)], name, ns, requester, module)
		if found is not None:
			return found

		if scope and ns != NS_PLAIN:
			anc = node.parent
			while anc is not None:
				macro = tree.modules[anc].macros.get(name)
				if macro is not None:
					return Resolution(items=(macro,))
				anc = tree.modules[anc].parent
			macro = tree.exported_macros().get(name)
			if macro is not None:
				return Resolution(items=(macro,))
		return None

	def _glob_lookup(
		self,
		edges: Iterable[ImportEdge],
		name: str,
		ns: str,
		requester: ModulePath,
		module: ModulePath,
	) -> Optional[Resolution]:
		found: Optional[Resolution] = None
		for edge in edges:
			if not edge.glob:
				continue
			target = self.glob_target(edge)
			if target is None:
				continue
			r = self.lookup_in(target, name, ns, edge.module)
			if r is None or not (r.found or r.external is not None):
				continue
			r = replace(r, via=edge)
			if found is None:
				found = r
			elif found.key() != r.key():
				raise UnresolvedReferenceError(
					message=f"`{name}` is ambiguous: imported by more than one glob in `{'::'.join(module)}`",
					file=edge.file,
					line=edge.span.line,
					column=edge.span.column,
					symbol=name,
				)
		return found

	# ---- helpers for the walker ----

	def resolve_items(self, item: ItemDef, site: Optional[RefSite]) -> Tuple[ItemId, ...]:
		"""Items a header site names (types/capabilities only)."""
		if site is None:
			return ()
		r = self.resolve_site(item, site)
		return tuple(i for i in r.items if self.tree.items[i].kind in (ItemKind.TYPE, ItemKind.TRAIT))


__all__ = ["NS_ANY", "NS_PLAIN", "Resolution", "Resolver"]
