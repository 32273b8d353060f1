"""
Tests for table layout descriptors in bioexporter.schema.
"""

from __future__ import annotations

import pytest

from bioexporter.schema import (
    COMBINED,
    LATENCY_METRIC,
    OPERATIONS,
    SCHEMAS,
    SIZE_METRIC,
    SPLIT,
    TableLayout,
    get_schema,
)
from bioexporter.utils import InvalidArgument


class TestOperations:
    """Tests for the operation catalog."""

    def test_catalog(self) -> None:
        """Only the common request operations are exported."""
        assert OPERATIONS == {
            0: "read",
            1: "write",
            2: "flush",
            3: "discard",
            7: "write_same",
            9: "write_zeroes",
        }


class TestTableLayout:
    """Tests for TableLayout dataclass."""

    def test_defaults(self) -> None:
        """Layouts embed the operation in the key by default."""
        layout = TableLayout("t", "m", "h", "usecs", bucket_count=8)

        assert layout.has_operation is True
        assert layout.operation is None

    def test_non_positive_bucket_count(self) -> None:
        """Bucket counts must be positive."""
        with pytest.raises(InvalidArgument):
            TableLayout("t", "m", "h", "usecs", bucket_count=0)

    def test_missing_fixed_operation(self) -> None:
        """Tables without operation field need a fixed operation."""
        with pytest.raises(InvalidArgument):
            TableLayout("t", "m", "h", "usecs", bucket_count=8, has_operation=False)


class TestSchemas:
    """Tests for the builtin schemas."""

    def test_combined(self) -> None:
        """Combined layout: 28 latency and 16 size buckets, operation in key."""
        lat, size = COMBINED.tables

        assert (lat.name, lat.bucket_count, lat.has_operation) == ("io_lat", 28, True)
        assert (size.name, size.bucket_count, size.has_operation) == ("io_req_sz", 16, True)

    def test_split(self) -> None:
        """Split layout: separate read/write tables without operation field."""
        counts = {t.name: (t.bucket_count, t.operation) for t in SPLIT.tables}

        assert counts == {
            "read_lat": (32, 0),
            "write_lat": (32, 1),
            "read_req_sz": (16, 0),
            "write_req_sz": (16, 1),
        }
        assert not any(t.has_operation for t in SPLIT.tables)

    @pytest.mark.parametrize("schema", [COMBINED, SPLIT])
    def test_same_metrics(self, schema) -> None:
        """Every schema exports the same two histograms."""
        assert list(schema.metrics()) == [LATENCY_METRIC, SIZE_METRIC]

    def test_metric_names(self) -> None:
        """Metric names use the ebpf namespace and bio subsystem."""
        assert LATENCY_METRIC == "ebpf_bio_req_latency"
        assert SIZE_METRIC == "ebpf_bio_req_size"

    def test_get_schema(self) -> None:
        """Schemas are looked up by name."""
        assert get_schema("combined") is COMBINED
        assert get_schema("split") is SPLIT
        assert set(SCHEMAS) == {"combined", "split"}

    def test_get_unknown_schema(self) -> None:
        """Unknown schema names raise InvalidArgument."""
        with pytest.raises(InvalidArgument, match="Unknown schema"):
            get_schema("dense")
