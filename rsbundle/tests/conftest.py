# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

import pytest

from rsbundle.config import BundleOptions, resolve_options
from rsbundle.loader import load_sources
from rsbundle.module_graph import SourceTree, build_graph
from rsbundle.pipeline import bundle
from rsbundle.reachability import ReachableSet, compute_reachable
from rsbundle.resolve import Resolver


def _write_file(path: Path, text: str) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(text, encoding="utf-8")


@dataclass
class Project:
	"""A throwaway cargo project laid out the way the bundler expects it."""

	root: Path

	def write(self, rel: str, text: str) -> Path:
		path = self.root / rel
		_write_file(path, text.lstrip("\n"))
		return path

	def options(self, problem_id: str = "a", **kwargs) -> BundleOptions:
		return replace(BundleOptions(project_root=self.root, problem_id=problem_id), **kwargs)

	def tree(self, problem_id: str = "a") -> SourceTree:
		return build_graph(load_sources(resolve_options(self.options(problem_id))))

	def reach(self, problem_id: str = "a") -> tuple[SourceTree, ReachableSet]:
		tree = self.tree(problem_id)
		return tree, compute_reachable(tree, Resolver(tree))

	def bundle(self, problem_id: str = "a", **kwargs) -> str:
		return bundle(self.options(problem_id, **kwargs)).text

	@property
	def output(self) -> Path:
		return self.root / "bundled" / "a.rs"


@pytest.fixture
def project(tmp_path: Path) -> Project:
	root = tmp_path / "proj"
	_write_file(root / "Cargo.toml", '[package]\nname = "algorist"\nversion = "0.1.0"\nedition = "2021"\n')
	return Project(root)
