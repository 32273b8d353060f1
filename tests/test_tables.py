"""
Tests for table sources and collection snapshots in bioexporter.tables.

These cover the end-to-end path from raw table entries to cumulative
histograms, for both the combined and split table layouts.
"""

from __future__ import annotations

import ctypes as ct
from unittest.mock import MagicMock

import pytest

from bioexporter.schema import COMBINED, SPLIT
from bioexporter.tables import (
    FRAME_COLUMNS,
    BccTableSource,
    StaticTableSource,
    TableSet,
    histograms_to_frame,
)

from conftest import no_op_key, op_key, value


class _OpKey(ct.Structure):
    _fields_ = [
        ("disk", ct.c_char * 32),
        ("op", ct.c_ubyte),
        ("slot", ct.c_ulonglong),
    ]


def combined_tables(lat_entries=(), size_entries=()) -> TableSet:
    return TableSet(COMBINED, {
        "io_lat": StaticTableSource(lat_entries),
        "io_req_sz": StaticTableSource(size_entries),
    })


class TestBccTableSource:
    """Tests for BccTableSource adapter."""

    def test_ctypes_to_bytes(self) -> None:
        """ctypes keys and leaves are converted to raw struct bytes."""
        key = _OpKey(b"sda", 1, 11)
        leaf = ct.c_ulonglong(499)
        table = MagicMock()
        table.items.return_value = [(key, leaf)]

        entries = list(BccTableSource(table).items())

        assert entries == [(op_key("sda", 1, 11), value(499))]

    def test_ctypes_layout_matches_codec(self) -> None:
        """The C struct layout has the size the codec expects."""
        assert ct.sizeof(_OpKey) == 48


class TestStaticTableSource:
    """Tests for StaticTableSource."""

    def test_items_repeatable(self) -> None:
        """A static source can be iterated more than once."""
        source = StaticTableSource(iter([(op_key("sda", 0, 1), value(1))]))

        assert list(source.items()) == list(source.items())
        assert len(list(source.items())) == 1


class TestTableSet:
    """Tests for TableSet class."""

    def test_missing_source(self) -> None:
        """Every table of the schema needs a source."""
        with pytest.raises(KeyError):
            TableSet(COMBINED, {"io_lat": StaticTableSource()})

    def test_empty_tables(self) -> None:
        """Empty sources produce zero entries and no histograms."""
        snapshot = combined_tables().snapshot()

        assert snapshot.table_entries == {"io_lat": 0, "io_req_sz": 0}
        assert list(snapshot.histograms()) == []
        assert snapshot.by_metric() == {"ebpf_bio_req_latency": [], "ebpf_bio_req_size": []}

    def test_write_scenario(self) -> None:
        """sda writes with buckets 3 and 5 populated on the size table."""
        tables = combined_tables(size_entries=[
            (op_key("sda", 1, 3), value(5)),
            (op_key("sda", 1, 5), value(2)),
        ])
        snapshot = tables.snapshot()
        (hist,) = snapshot.by_metric()["ebpf_bio_req_size"]

        assert snapshot.table_entries["io_req_sz"] == 2
        assert hist.device == "sda"
        assert hist.operation == "write"
        assert hist.bucket_map()[8.0] == 5
        assert hist.bucket_map()[16.0] == 5
        assert hist.bucket_map()[32.0] == 7
        assert hist.count == 7
        assert hist.sum == 104.0

    def test_unknown_operation_counted_not_emitted(self) -> None:
        """Unknown operation codes count as table entries but emit nothing."""
        snapshot = combined_tables(lat_entries=[(op_key("sdb", 99, 2), value(3))]).snapshot()

        assert snapshot.table_entries["io_lat"] == 1
        assert list(snapshot.histograms()) == []

    def test_out_of_range_stats(self) -> None:
        """Out-of-range buckets are reported in the table stats."""
        snapshot = combined_tables(lat_entries=[(op_key("sda", 0, 40), value(3))]).snapshot()
        result = snapshot.tables[0]

        assert result.stats.out_of_range == 1
        assert result.stats.processed == 0
        assert result.histograms == []

    def test_snapshots_identical(self, binary_entries: list) -> None:
        """Two snapshots of an unchanged source are identical."""
        tables = combined_tables(lat_entries=binary_entries)

        first = tables.snapshot()
        second = tables.snapshot()

        assert list(first.histograms()) == list(second.histograms())
        assert first.table_entries == second.table_entries

    def test_split_schema(self) -> None:
        """Split tables feed the same metrics with read/write labels."""
        sources = {
            "read_lat": StaticTableSource([(no_op_key("sda", 4), value(1))]),
            "write_lat": StaticTableSource([(no_op_key("sda", 6), value(2))]),
            "read_req_sz": StaticTableSource(),
            "write_req_sz": StaticTableSource([(no_op_key("sdb", 2), value(8))]),
        }
        metrics = TableSet(SPLIT, sources).snapshot().by_metric()

        assert [(h.device, h.operation, h.count) for h in metrics["ebpf_bio_req_latency"]] == [
            ("sda", "read", 1),
            ("sda", "write", 2),
        ]
        assert [(h.device, h.operation) for h in metrics["ebpf_bio_req_size"]] == [("sdb", "write")]
        assert len(metrics["ebpf_bio_req_latency"][0].buckets) == 32

    def test_custom_catalog(self) -> None:
        """The operation catalog can be replaced."""
        tables = TableSet(COMBINED, {
            "io_lat": StaticTableSource([(op_key("sda", 5, 0), value(1))]),
            "io_req_sz": StaticTableSource(),
        }, catalog={5: "secure_erase"})

        assert [h.operation for _, h in tables.snapshot().histograms()] == ["secure_erase"]


class TestHistogramsToFrame:
    """Tests for histograms_to_frame function."""

    def test_empty(self) -> None:
        """An empty snapshot gives an empty frame with the summary columns."""
        frame = histograms_to_frame(combined_tables().snapshot())

        assert frame.empty
        assert list(frame.columns) == FRAME_COLUMNS

    def test_rows(self) -> None:
        """One row per table, device and operation."""
        tables = combined_tables(
            lat_entries=[(op_key("sda", 0, 2), value(4))],
            size_entries=[(op_key("sda", 1, 3), value(5)), (op_key("sda", 1, 5), value(2))],
        )
        frame = histograms_to_frame(tables.snapshot())

        assert len(frame) == 2
        row = frame[frame.TABLE == "io_req_sz"].iloc[0]
        assert row.DEVICE == "sda"
        assert row.OPERATION == "write"
        assert row.COUNT == 7
        assert row.SUM == 104.0
        assert row.AVG == pytest.approx(104.0 / 7)
