# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

"""
Table decoder

Turns the unordered (key, value) entries of a BPF histogram table into
per-device, per-operation bucket series. Every call starts from scratch: the
table is a best-effort snapshot of counters the kernel keeps incrementing
while we read them, and no state is carried between scrapes.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from bioexporter.keycodec import DecodeError, RawField, decode_key, decode_value
from bioexporter.logger import get_logger, COLORS
from bioexporter.schema import TableLayout

logger = get_logger("decoder", COLORS.cyan)

RawEntry = Tuple[RawField, RawField]


class BucketSeries:
    """
    Fixed-length sequence of log2 bucket counts for one (device, operation).

    Only written slots are stored. The sorted list of occupied indices lets the
    cumulative walk go in ascending bucket order without materializing a dense
    array; unwritten slots read as 0.
    """

    __slots__ = ("length", "_counts", "_indices")

    def __init__(self, length: int):
        self.length = length
        self._counts: Dict[int, int] = {}
        self._indices: List[int] = []

    def __len__(self) -> int:
        return self.length

    def __getitem__(self, index: int) -> int:
        if not 0 <= index < self.length:
            raise IndexError(f"bucket index {index} out of range for {self.length} buckets")
        return self._counts.get(index, 0)

    def __setitem__(self, index: int, count: int) -> None:
        if not 0 <= index < self.length:
            raise IndexError(f"bucket index {index} out of range for {self.length} buckets")
        if index not in self._counts:
            bisect.insort(self._indices, index)
        # last write wins
        self._counts[index] = count

    def __iter__(self) -> Iterator[int]:
        for index in range(self.length):
            yield self._counts.get(index, 0)

    def __eq__(self, other) -> bool:
        if not isinstance(other, BucketSeries):
            return NotImplemented
        return self.length == other.length and list(self) == list(other)

    def __repr__(self):
        return f"BucketSeries(length={self.length}, counts={dict(self.occupied())})"

    def occupied(self) -> Iterator[Tuple[int, int]]:
        """(index, count) pairs of written slots in ascending index order"""
        for index in self._indices:
            yield index, self._counts[index]

    def total(self) -> int:
        return sum(self._counts.values())


# device -> operation code -> bucket series
DeviceOpGroup = Dict[str, Dict[int, BucketSeries]]


@dataclass
class DecodeStats:
    """Outcome of one decode pass"""

    processed: int = 0
    malformed: int = 0
    out_of_range: int = 0

    @property
    def skipped(self) -> int:
        return self.malformed + self.out_of_range


def decode_table_stats(entries: Iterable[RawEntry], bucket_count: int,
                       layout: Optional[TableLayout] = None) -> Tuple[DecodeStats, DeviceOpGroup]:
    """
    Decode all entries of a histogram table.

    Entries with an undecodable key or value, and entries whose bucket index
    is beyond ``bucket_count``, are skipped and tallied in the returned stats.
    Nothing here raises on malformed input.

    Args:
        entries: (key, value) pairs in any order
        bucket_count: number of log2 slots of the table
        layout: layout of the table keys, see ``decode_key``

    Returns:
        Tuple of (DecodeStats, DeviceOpGroup)
    """
    stats = DecodeStats()
    groups: DeviceOpGroup = {}
    table_name = layout.name if layout is not None else "?"

    for raw_key, raw_value in entries:
        try:
            key = decode_key(raw_key, layout)
            value = decode_value(raw_value)
        except DecodeError as e:
            stats.malformed += 1
            logger.debug(f"Skipping malformed entry in table {table_name}: {e}")
            continue

        if key.bucket >= bucket_count:
            stats.out_of_range += 1
            logger.debug(
                f"Dropping bucket {key.bucket} for {key.device}/{key.operation} in table {table_name}:"
                f" table has {bucket_count} buckets"
            )
            continue

        series = groups.setdefault(key.device, {}).get(key.operation)
        if series is None:
            series = groups[key.device][key.operation] = BucketSeries(bucket_count)
        series[key.bucket] = value
        stats.processed += 1

    if stats.out_of_range:
        logger.info(
            f"Table {table_name}: dropped {stats.out_of_range} entries beyond {bucket_count} buckets."
            " The BPF program and the table layout disagree on the bucket count."
        )

    return stats, groups


def decode_table(entries: Iterable[RawEntry], bucket_count: int,
                 layout: Optional[TableLayout] = None) -> Tuple[int, DeviceOpGroup]:
    """Decode a table, returning (entries processed, groups)"""
    stats, groups = decode_table_stats(entries, bucket_count, layout)
    return stats.processed, groups
