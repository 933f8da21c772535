"""Source-map builder, lookup and parsing."""

from __future__ import annotations

import pytest

from planforge.compiler.source_map import (
    SourceMapBuilder,
    get_contributing_sources,
    lookup_source_location,
    parse_source_map,
    serialize_source_map,
)


def test_range_mapping_clamps_to_source_span() -> None:
    builder = SourceMapBuilder(file="node.plan")
    builder.add_range_mapping(1, 4, "spec.yaml", 10, 11)
    source_map = builder.build()

    assert [mapping.source_line for mapping in source_map.mappings] == [10, 11, 11, 11]
    assert lookup_source_location(source_map, 2) == ("spec.yaml", 11)
    assert lookup_source_location(source_map, 9) is None


def test_sources_are_deduplicated_and_mappings_sorted() -> None:
    builder = SourceMapBuilder(file="root.plan")
    builder.add_mapping(3, "b.yaml", 1)
    builder.add_mapping(1, "a.yaml", 5)
    builder.add_mapping(2, "b.yaml", 2)
    source_map = builder.build()

    assert get_contributing_sources(source_map) == ["b.yaml", "a.yaml"]
    assert [mapping.generated_line for mapping in source_map.mappings] == [1, 2, 3]
    assert lookup_source_location(source_map, 1) == ("a.yaml", 5)


def test_serialized_map_parses_back() -> None:
    builder = SourceMapBuilder(file="node.plan")
    builder.add_range_mapping(1, 2, "spec.yaml", 4)
    source_map = builder.build()

    assert parse_source_map(serialize_source_map(source_map)) == source_map


def test_line_numbers_are_one_based() -> None:
    builder = SourceMapBuilder(file="node.plan")

    with pytest.raises(ValueError, match="1-based"):
        builder.add_mapping(0, "spec.yaml", 1)
    with pytest.raises(ValueError, match="generated_end_line"):
        builder.add_range_mapping(3, 2, "spec.yaml", 1)


@pytest.mark.parametrize(
    "content",
    ["not json", "[]", '{"file": 3}', '{"file": "x", "sources": [1]}'],
)
def test_malformed_maps_raise_value_error(content: str) -> None:
    with pytest.raises(ValueError):
        parse_source_map(content)
