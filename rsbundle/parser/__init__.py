# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Rust item-level parser (lark grammar plus AST builder)."""

from rsbundle.parser.ast import Attr, Item, SourceFile, UseLeaf
from rsbundle.parser.parser import parse_source, parse_use_fragment

__all__ = ["Attr", "Item", "SourceFile", "UseLeaf", "parse_source", "parse_use_fragment"]
