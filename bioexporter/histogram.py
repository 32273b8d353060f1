# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

"""
Cumulative histogram aggregation

The BPF program stores, per log2 slot, how many observations fell in that
slot. Prometheus histograms are cumulative: the count reported for a bucket
boundary includes every observation at or below it. Slots are therefore
walked in ascending order while keeping a running total.

The sum cannot be recovered from log2 buckets. It is approximated with the
bucket upper bound, ``sum(2^i * count_i)``, which overestimates the real sum
by up to a factor of two. Count and sum are still needed by Prometheus to
compute an average from the histogram.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, Tuple

from bioexporter.decoder import BucketSeries, DeviceOpGroup
from bioexporter.schema import OPERATIONS

Buckets = Tuple[Tuple[float, int], ...]


@dataclass(frozen=True)
class CumulativeHistogram:
    """A decoded histogram for one (device, operation) pair"""

    device: str
    operation: str
    buckets: Buckets
    count: int
    sum: float

    def bucket_map(self) -> Dict[float, int]:
        """Upper bound -> cumulative count"""
        return dict(self.buckets)


def aggregate(series: BucketSeries) -> Tuple[Buckets, int, float]:
    """
    Turn per-slot occupancy counts into cumulative buckets.

    Returns:
        Tuple of (buckets, count, sum) where buckets is an ascending sequence
        of (2^index, cumulative count) for every index of the series
    """
    occupancy = dict(series.occupied())
    buckets = []
    running = 0
    approx_sum = 0.0

    for index in range(len(series)):
        upper_bound = 2.0 ** index
        count = occupancy.get(index, 0)
        running += count
        approx_sum += upper_bound * count
        buckets.append((upper_bound, running))

    return tuple(buckets), running, approx_sum


def emit(groups: DeviceOpGroup,
         catalog: Mapping[int, str] = OPERATIONS) -> Iterator[CumulativeHistogram]:
    """
    Lazily yield one cumulative histogram per (device, operation).

    Groups whose operation code is missing from ``catalog`` are skipped.
    Histograms are yielded ordered by device name, then operation code.
    """
    for device in sorted(groups):
        operations = groups[device]
        for op in sorted(operations):
            label = catalog.get(op)
            if label is None:
                continue
            buckets, count, approx_sum = aggregate(operations[op])
            yield CumulativeHistogram(
                device=device,
                operation=label,
                buckets=buckets,
                count=count,
                sum=approx_sum,
            )
