# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
rsbundle: single-file bundler for multi-module Rust contest libraries.

The pipeline reads an entry file plus the library source tree, builds the
module graph, walks the items the entry actually needs, flattens them into one
namespace and writes a single self-contained `.rs` file.
"""

from rsbundle.core.errors import (
	BundleError,
	NameCollisionError,
	ParseError,
	UnresolvedModuleError,
	UnresolvedReferenceError,
	WriteError,
)

__all__ = [
	"BundleError",
	"NameCollisionError",
	"ParseError",
	"UnresolvedModuleError",
	"UnresolvedReferenceError",
	"WriteError",
]
