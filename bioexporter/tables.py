# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

"""
Table sources and collection snapshots

A table source is anything that can list the (key, value) entries of a BPF
histogram table. A TableSet binds the tables of a schema to their sources and
decodes all of them in one collection pass.
"""

from __future__ import annotations

import ctypes as ct
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import pandas as pd

from bioexporter.decoder import DecodeStats, RawEntry, decode_table_stats
from bioexporter.histogram import CumulativeHistogram, emit
from bioexporter.logger import get_logger, COLORS
from bioexporter.schema import OPERATIONS, Schema, TableLayout

logger = get_logger("tables", COLORS.magenta)

FRAME_COLUMNS = ["TABLE", "DEVICE", "OPERATION", "COUNT", "SUM", "AVG"]


def _ctypes_bytes(obj: Any) -> bytes:
    return ct.string_at(ct.addressof(obj), ct.sizeof(obj))


class TableSource:
    """Base class for iterable BPF table sources"""

    def items(self) -> Iterable[RawEntry]:
        raise NotImplementedError()


class BccTableSource(TableSource):
    """
    Adapter over a bcc table (``BPF[name]``).

    Keys and leaves are ctypes objects; they are handed to the decoder as the
    raw bytes of the underlying BPF structs.
    """

    def __init__(self, table):
        self.table = table

    def items(self) -> Iterator[RawEntry]:
        for key, leaf in self.table.items():
            yield _ctypes_bytes(key), _ctypes_bytes(leaf)


class StaticTableSource(TableSource):
    """In-memory table source, e.g. a recorded table dump"""

    def __init__(self, entries: Iterable[RawEntry] = ()):
        self.entries: List[RawEntry] = list(entries)

    def items(self) -> Iterator[RawEntry]:
        return iter(self.entries)


@dataclass
class TableResult:
    layout: TableLayout
    stats: DecodeStats
    histograms: List[CumulativeHistogram] = field(default_factory=list)


@dataclass
class Snapshot:
    """Everything decoded in one collection pass"""

    schema: Schema
    tables: List[TableResult] = field(default_factory=list)

    @property
    def table_entries(self) -> Dict[str, int]:
        return {result.layout.name: result.stats.processed for result in self.tables}

    def by_metric(self) -> Dict[str, List[CumulativeHistogram]]:
        """Histograms grouped by exported metric name, in schema order"""
        metrics: Dict[str, List[CumulativeHistogram]] = {name: [] for name in self.schema.metrics()}
        for result in self.tables:
            metrics[result.layout.metric].extend(result.histograms)
        return metrics

    def histograms(self) -> Iterator[Tuple[TableLayout, CumulativeHistogram]]:
        for result in self.tables:
            for hist in result.histograms:
                yield result.layout, hist


class TableSet:
    """The tables of a schema bound to their sources"""

    def __init__(self, schema: Schema, sources: Mapping[str, TableSource],
                 catalog: Optional[Mapping[int, str]] = None):
        missing = [layout.name for layout in schema.tables if layout.name not in sources]
        if missing:
            raise KeyError(f"No source for table(s) {', '.join(missing)} of schema '{schema.name}'")
        self.schema = schema
        self.sources = dict(sources)
        self.catalog = OPERATIONS if catalog is None else catalog

    def snapshot(self) -> Snapshot:
        """Decode every table of the schema from its current contents"""
        snapshot = Snapshot(schema=self.schema)
        for layout in self.schema.tables:
            stats, groups = decode_table_stats(
                self.sources[layout.name].items(), layout.bucket_count, layout
            )
            histograms = list(emit(groups, self.catalog))
            logger.debug(
                f"Table {layout.name}: {stats.processed} entries, {stats.skipped} skipped,"
                f" {len(histograms)} histogram(s)"
            )
            snapshot.tables.append(TableResult(layout=layout, stats=stats, histograms=histograms))
        return snapshot


def histograms_to_frame(snapshot: Snapshot) -> pd.DataFrame:
    """Summarize a snapshot as one row per table/device/operation"""
    rows = []
    for layout, hist in snapshot.histograms():
        rows.append({
            "TABLE": layout.name,
            "DEVICE": hist.device,
            "OPERATION": hist.operation,
            "COUNT": hist.count,
            "SUM": hist.sum,
            "AVG": hist.sum / hist.count if hist.count else 0.0,
        })
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)
