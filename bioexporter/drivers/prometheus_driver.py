# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

import argparse
from threading import Lock

import prometheus_client as prom
from prometheus_client.core import GaugeMetricFamily, HistogramMetricFamily
from prometheus_client.registry import Collector
from prometheus_client.utils import floatToGoString

from bioexporter.drivers.base import DriverBase
from bioexporter.histogram import CumulativeHistogram
from bioexporter.schema import NAMESPACE, SUBSYSTEM

TABLE_ENTRIES_METRIC = f"{NAMESPACE}_{SUBSYSTEM}_bpf_table_entries"
SKIPPED_ENTRIES_METRIC = f"{NAMESPACE}_{SUBSYSTEM}_decode_skipped_entries"
HISTOGRAM_LABELS = ["device", "operation"]


def histogram_buckets(hist: CumulativeHistogram):
    """Prometheus bucket list of a histogram, terminated by +Inf"""
    buckets = [(floatToGoString(bound), count) for bound, count in hist.buckets]
    buckets.append(("+Inf", hist.count))
    return buckets


class PrometheusDriver(DriverBase, Collector):
    """
    Prometheus exporter driver.

    Tables are decoded on every scrape, so the exposed histograms always
    reflect the current kernel counters.
    """

    wants_snapshots = False

    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--prom-exporter-host", default="::",
        help="Prometheus exporter host."
    )
    parser.add_argument(
        "--prom-exporter-port", default=9123, type=int,
        help="Prometheus exporter port."
    )
    parser.add_argument(
        "--keep-default-collectors", action="store_true",
        help="Keep the process, platform and gc collectors of prometheus_client."
    )

    def __init__(self, common_args, tables, registry=None):
        super().__init__(common_args, tables)
        self.registry = registry if registry is not None else prom.REGISTRY
        self.lock = Lock()
        self._registered = False

    def __str__(self):
        return (
            f"{self.__class__.__name__}"
            f"(prom_exporter_host={self.prom_exporter_host},"
            f" prom_exporter_port={self.prom_exporter_port})"
        )

    async def setup(self, args=(), namespace=None):
        args = await super().setup(args, namespace)
        self.prom_exporter_host = args.prom_exporter_host
        self.prom_exporter_port = args.prom_exporter_port

        if not args.keep_default_collectors and self.registry is prom.REGISTRY:
            # Clean up default Prometheus collectors
            prom.REGISTRY.unregister(prom.PROCESS_COLLECTOR)
            prom.REGISTRY.unregister(prom.PLATFORM_COLLECTOR)
            prom.REGISTRY.unregister(prom.GC_COLLECTOR)

        # Register our custom collector
        self.registry.register(self)
        self._registered = True

        # Start HTTP server
        exporter = prom.start_http_server(
            port=self.prom_exporter_port,
            addr=self.prom_exporter_host,
            registry=self.registry,
        )
        if exporter:
            self.exporter = exporter[0]

        self.logger.info(f"{self} has been initialized.")
        return args

    async def teardown(self):
        if hasattr(self, "exporter"):
            self.logger.info("Shutting down Prometheus exporter.")
            self.exporter.shutdown()
        if self._registered:
            self.registry.unregister(self)
            self._registered = False

    async def store_sample(self, snapshot):
        """Histograms are decoded at scrape time; nothing to store"""
        self.logger.debug(f"Ignoring interval snapshot with {len(snapshot.tables)} table(s).")

    def _families(self):
        metrics = self.tables.schema.metrics()
        histograms = {
            name: HistogramMetricFamily(name, help_text, labels=HISTOGRAM_LABELS)
            for name, help_text in metrics.items()
        }
        table_entries = GaugeMetricFamily(
            TABLE_ENTRIES_METRIC, "The number of BPF table entries used.", labels=["table"]
        )
        skipped_entries = GaugeMetricFamily(
            SKIPPED_ENTRIES_METRIC,
            "The number of BPF table entries skipped during the last decode.",
            labels=["table", "reason"],
        )
        return histograms, table_entries, skipped_entries

    def describe(self):
        histograms, table_entries, skipped_entries = self._families()
        return [*histograms.values(), table_entries, skipped_entries]

    def collect(self):
        """Decode the BPF tables and collect metrics for Prometheus scraping"""
        # Make sure only 1 prometheus request can be processed at a time
        with self.lock:
            snapshot = self.tables.snapshot()

        histograms, table_entries, skipped_entries = self._families()

        for result in snapshot.tables:
            table = result.layout.table_label
            table_entries.add_metric([table], result.stats.processed)
            skipped_entries.add_metric([table, "malformed"], result.stats.malformed)
            skipped_entries.add_metric([table, "out_of_range"], result.stats.out_of_range)

        for metric, hists in snapshot.by_metric().items():
            family = histograms[metric]
            for hist in hists:
                family.add_metric([hist.device, hist.operation], histogram_buckets(hist), hist.sum)

        self.logger.debug(f"Collected {sum(len(f.samples) for f in histograms.values())} histogram sample(s).")

        yield from histograms.values()
        yield table_entries
        yield skipped_entries
