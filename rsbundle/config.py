# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Bundler configuration.

`BundleOptions` is the single input of a run. Paths are relative to the
project root unless absolute. `resolve_options` validates the problem id and
fills the library crate name from `Cargo.toml` when it was not given.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path

from rsbundle.core.errors import ParseError

log = logging.getLogger(__name__)

DEFAULT_CRATE_NAME = "algorist"


@dataclass(frozen=True)
class BundleOptions:
	project_root: Path = Path(".")
	problem_id: str = ""
	crate_name: str | None = None
	src_dir: Path = Path("src")
	bin_dir: Path = Path("src") / "bin"
	lib_file: Path = Path("src") / "lib.rs"
	out_dir: Path = Path("bundled")
	entry_fn: str = "main"
	rustfmt: str | None = None  # formatter command run on the output; None disables it

	def under_root(self, p: Path) -> Path:
		return p if p.is_absolute() else self.project_root / p

	@property
	def entry_path(self) -> Path:
		return self.under_root(self.bin_dir) / f"{self.problem_id}.rs"

	@property
	def lib_path(self) -> Path:
		return self.under_root(self.lib_file)

	@property
	def src_path(self) -> Path:
		return self.under_root(self.src_dir)

	@property
	def output_path(self) -> Path:
		return self.under_root(self.out_dir) / f"{self.problem_id}.rs"


def validate_problem_id(problem_id: str) -> None:
	if not problem_id:
		raise ValueError("problem id must be non-empty")
	if "/" in problem_id or "\\" in problem_id or problem_id in (".", ".."):
		raise ValueError(f"problem id must be a plain file stem, got: {problem_id}")
	if problem_id.endswith(".rs"):
		raise ValueError(f"problem id must not include the .rs suffix, got: {problem_id}")


def crate_name_from_manifest(manifest: Path) -> str | None:
	"""
	Library crate name declared by `Cargo.toml`.

	`[lib] name` wins; otherwise the package name with `-` mapped to `_`
	(the way cargo derives the library target name).
	"""
	if not manifest.exists():
		return None
	try:
		data = tomllib.loads(manifest.read_text(encoding="utf-8"))
	except tomllib.TOMLDecodeError as err:
		raise ParseError(message=f"invalid Cargo.toml: {err}", file=str(manifest)) from err
	lib = data.get("lib")
	if isinstance(lib, dict) and isinstance(lib.get("name"), str):
		return lib["name"]
	pkg = data.get("package")
	if isinstance(pkg, dict) and isinstance(pkg.get("name"), str):
		return pkg["name"].replace("-", "_")
	return None


def resolve_options(opts: BundleOptions) -> BundleOptions:
	validate_problem_id(opts.problem_id)
	if opts.crate_name:
		return opts
	name = crate_name_from_manifest(opts.project_root / "Cargo.toml")
	if name is None:
		name = DEFAULT_CRATE_NAME
	log.debug("library crate name: %s", name)
	return replace(opts, crate_name=name)


__all__ = [
	"BundleOptions",
	"DEFAULT_CRATE_NAME",
	"crate_name_from_manifest",
	"resolve_options",
	"validate_problem_id",
]
