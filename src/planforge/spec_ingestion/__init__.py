"""Spec tree ingestion: typed-tree loading and canonical spec-text rendering."""

from planforge.spec_ingestion.loader import SpecLoadError, load_spec_tree, parse_spec_tree
from planforge.spec_ingestion.serializer import serialize_node

__all__ = ["SpecLoadError", "load_spec_tree", "parse_spec_tree", "serialize_node"]
