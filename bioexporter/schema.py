# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

"""
Table layout descriptors

A schema describes which histogram tables a BPF program produces, how their
keys are laid out and which Prometheus histogram each of them feeds. A single
decoder handles every layout through these descriptors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from bioexporter.utils import InvalidArgument

NAMESPACE = "ebpf"
SUBSYSTEM = "bio"

# Kernel block device names are capped at DISK_NAME_LEN, cf. linux/blkdev.h
DISK_NAME_LEN = 32

# Upper bound of (device, operation, slot) keys per histogram table
DEFAULT_MAX_ENTRIES = 10240

# Linux req_opf enums, cf. linux/blk_types.h
REQ_OP_READ = 0
REQ_OP_WRITE = 1
REQ_OP_FLUSH = 2
REQ_OP_DISCARD = 3
REQ_OP_ZONE_REPORT = 4
REQ_OP_SECURE_ERASE = 5
REQ_OP_ZONE_RESET = 6
REQ_OP_WRITE_SAME = 7
REQ_OP_WRITE_ZEROES = 9
REQ_OP_SCSI_IN = 32
REQ_OP_SCSI_OUT = 33
REQ_OP_DRV_IN = 34
REQ_OP_DRV_OUT = 35

# Request operations exported as histograms. Anything else is dropped to keep
# label cardinality bounded.
OPERATIONS: Dict[int, str] = {
    REQ_OP_READ: "read",
    REQ_OP_WRITE: "write",
    REQ_OP_FLUSH: "flush",
    REQ_OP_DISCARD: "discard",
    REQ_OP_WRITE_SAME: "write_same",
    REQ_OP_WRITE_ZEROES: "write_zeroes",
}

LATENCY_METRIC = f"{NAMESPACE}_{SUBSYSTEM}_req_latency"
LATENCY_HELP = "A histogram of bio request latencies in microseconds."
SIZE_METRIC = f"{NAMESPACE}_{SUBSYSTEM}_req_size"
SIZE_HELP = "A histogram of bio request sizes in KiB."


@dataclass(frozen=True)
class TableLayout:
    """
    Layout of a single BPF histogram table.

    ``bucket_count`` must match the slot limit of the BPF program. Tables
    whose key carries no operation field set ``has_operation=False`` and name
    the operation every entry belongs to.
    """

    name: str
    metric: str
    help: str
    unit: str
    bucket_count: int
    has_operation: bool = True
    operation: Optional[int] = None
    entries_label: Optional[str] = None

    @property
    def table_label(self) -> str:
        """Value of the `table` label of the per-table gauges"""
        return self.entries_label or self.name

    def __post_init__(self) -> None:
        if self.bucket_count <= 0:
            raise InvalidArgument(f"table '{self.name}' must have a positive bucket count")
        if not self.has_operation and self.operation is None:
            raise InvalidArgument(f"table '{self.name}' has no operation field and no fixed operation")


@dataclass(frozen=True)
class Schema:
    name: str
    tables: Tuple[TableLayout, ...]

    def metrics(self) -> Dict[str, str]:
        """Exported metric names mapped to their help text, in table order"""
        result: Dict[str, str] = {}
        for layout in self.tables:
            result.setdefault(layout.metric, layout.help)
        return result


# Single latency and size table, operation embedded in the key.
COMBINED = Schema(
    name="combined",
    tables=(
        TableLayout("io_lat", LATENCY_METRIC, LATENCY_HELP, "usecs", bucket_count=28,
                    entries_label="req_latency"),
        TableLayout("io_req_sz", SIZE_METRIC, SIZE_HELP, "kbytes", bucket_count=16,
                    entries_label="req_size"),
    ),
)

# Separate read and write tables, operation implied by the table.
SPLIT = Schema(
    name="split",
    tables=(
        TableLayout("read_lat", LATENCY_METRIC, LATENCY_HELP, "usecs", bucket_count=32,
                    has_operation=False, operation=REQ_OP_READ),
        TableLayout("write_lat", LATENCY_METRIC, LATENCY_HELP, "usecs", bucket_count=32,
                    has_operation=False, operation=REQ_OP_WRITE),
        TableLayout("read_req_sz", SIZE_METRIC, SIZE_HELP, "kbytes", bucket_count=16,
                    has_operation=False, operation=REQ_OP_READ),
        TableLayout("write_req_sz", SIZE_METRIC, SIZE_HELP, "kbytes", bucket_count=16,
                    has_operation=False, operation=REQ_OP_WRITE),
    ),
)

SCHEMAS: Dict[str, Schema] = {s.name: s for s in (COMBINED, SPLIT)}
DEFAULT_SCHEMA = COMBINED.name


def get_schema(name: str) -> Schema:
    try:
        return SCHEMAS[name]
    except KeyError:
        raise InvalidArgument(
            f"Unknown schema '{name}'. Available schemas: {', '.join(sorted(SCHEMAS))}"
        ) from None
