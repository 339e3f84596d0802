# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Shared primitives: source spans and the bundler error taxonomy."""

from rsbundle.core.errors import BundleError
from rsbundle.core.span import Span

__all__ = ["BundleError", "Span"]
