# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

import argparse
from datetime import datetime

from bioexporter.drivers.base import DriverBase
from bioexporter.tables import histograms_to_frame
from bioexporter.utils import log2_bucket_range, stars


class ScreenDriver(DriverBase):
    """Screen/console output driver for block I/O histograms"""

    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--histograms", action="store_true",
        help="Print a log2 bar chart of every histogram, not only the summary table."
    )
    parser.add_argument(
        "--bar-width", type=int, default=40,
        help="Width of histogram bars, in characters."
    )

    def __str__(self):
        return f"{self.__class__.__name__}(histograms={self.histograms}, bar_width={self.bar_width})"

    async def setup(self, args=(), namespace=None):
        args = await super().setup(args, namespace)
        self.histograms = args.histograms
        self.bar_width = args.bar_width
        self._header_printed = False
        return args

    async def store_sample(self, snapshot):
        """Display the histograms of a collection pass on the console"""
        if not self._header_printed:
            print()
            print(f"Tracing block I/O... Output every {self.common_args.interval} seconds")
            self._header_printed = True

        frame = histograms_to_frame(snapshot)
        timestamp = datetime.now().strftime("%H:%M:%S")
        print(f"\n[{timestamp}] Block I/O summary ({snapshot.schema.name}):")
        print("-" * 60)
        if frame.empty:
            print("  no I/O recorded")
            return
        print(frame.to_string(index=False, float_format=lambda v: f"{v:.1f}"))

        if self.histograms:
            for layout, hist in snapshot.histograms():
                print()
                self._print_log2_hist(layout.unit, f"{layout.name} {hist.device} {hist.operation}", hist)

    def _print_log2_hist(self, unit, title, hist):
        """Print a histogram the way bcc's print_log2_hist does"""
        counts = []
        previous = 0
        for _, cumulative in hist.buckets:
            counts.append(cumulative - previous)
            previous = cumulative

        # trim empty trailing buckets
        while counts and counts[-1] == 0:
            counts.pop()
        if not counts:
            return

        max_count = max(counts)
        print(f"{title}")
        print(f"{unit:>24} : count     distribution")
        for index, count in enumerate(counts):
            low, high = log2_bucket_range(index)
            print(f"{low:>10} -> {high:<10} : {count:<8} |{stars(count, max_count, self.bar_width):<{self.bar_width}}|")
