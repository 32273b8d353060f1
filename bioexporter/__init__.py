# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

"""
bioexporter - Block I/O latency and size histograms for Prometheus

Traces block layer requests with eBPF, accumulating per-device and
per-operation log2 histograms of request latency (microseconds) and request
size (KiB) in kernel tables. On every scrape the tables are decoded into
cumulative Prometheus histograms.
"""

__version__ = "1.0.0"
__author__ = "bioexporter Development Team"
