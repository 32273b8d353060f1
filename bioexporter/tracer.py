# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

"""
Block I/O tracer

Compiles the BPF program matching a schema, attaches it to the block layer
accounting functions and exposes the resulting histogram tables.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from bcc import BPF

from bioexporter.logger import get_logger, COLORS
from bioexporter.schema import COMBINED, DEFAULT_MAX_ENTRIES, DISK_NAME_LEN, SPLIT, Schema
from bioexporter.tables import BccTableSource, TableSet

logger = get_logger("tracer", COLORS.magenta)

# BPF function name -> candidate kernel functions, first available wins
KPROBES: Dict[str, Sequence[bytes]] = {
    "trace_req_start": (b"__blk_account_io_start", b"blk_account_io_start"),
    "trace_req_completion": (b"__blk_account_io_done", b"blk_account_io_done"),
}

BPF_HEADER = r"""
#include <uapi/linux/ptrace.h>
#include <linux/blkdev.h>
#include <linux/blk_types.h>

struct start_val_t {
    u64 ts;
    u64 bytes;
};

// Start time and size of each in-flight request
BPF_HASH(start, struct request *, struct start_val_t);

// Record start time of a request
int trace_req_start(struct pt_regs *ctx, struct request *req)
{
    struct start_val_t val = {};
    val.ts = bpf_ktime_get_ns();
    val.bytes = req->__data_len;
    start.update(&req, &val);
    return 0;
}
"""

BPF_COMBINED = r"""
typedef struct disk_key {
    char disk[__DISK_NAME_LEN__];
    u8 op;
    u64 slot;
} disk_key_t;

BPF_HISTOGRAM(io_lat, disk_key_t, __MAX_ENTRIES__);
BPF_HISTOGRAM(io_req_sz, disk_key_t, __MAX_ENTRIES__);

// Calculate request duration and size and store them in histogram buckets
int trace_req_completion(struct pt_regs *ctx, struct request *req)
{
    struct start_val_t *valp;
    disk_key_t lat_key, sz_key;
    u64 delta;
    u8 op;

    valp = start.lookup(&req);
    if (valp == 0) {
        return 0;   // missed issue
    }
    delta = (bpf_ktime_get_ns() - valp->ts) / 1000;
    op = req->cmd_flags & REQ_OP_MASK;

    __builtin_memset(&lat_key, 0, sizeof(lat_key));
    bpf_probe_read_kernel(&lat_key.disk, sizeof(lat_key.disk), req->__RQ_DISK__->disk_name);
    lat_key.op = op;
    lat_key.slot = bpf_log2l(delta);
    io_lat.atomic_increment(lat_key);

    __builtin_memset(&sz_key, 0, sizeof(sz_key));
    bpf_probe_read_kernel(&sz_key.disk, sizeof(sz_key.disk), req->__RQ_DISK__->disk_name);
    sz_key.op = op;
    sz_key.slot = bpf_log2l(valp->bytes / 1024);
    io_req_sz.atomic_increment(sz_key);

    start.delete(&req);
    return 0;
}
"""

BPF_SPLIT = r"""
typedef struct disk_key {
    char disk[__DISK_NAME_LEN__];
    u64 slot;
} disk_key_t;

// Histograms to separately record latencies of read / write requests
BPF_HISTOGRAM(read_lat, disk_key_t, __MAX_ENTRIES__);
BPF_HISTOGRAM(write_lat, disk_key_t, __MAX_ENTRIES__);

// Histograms to separately record sizes of read / write requests
BPF_HISTOGRAM(read_req_sz, disk_key_t, __MAX_ENTRIES__);
BPF_HISTOGRAM(write_req_sz, disk_key_t, __MAX_ENTRIES__);

// Calculate request duration and size and store them in histogram buckets
int trace_req_completion(struct pt_regs *ctx, struct request *req)
{
    struct start_val_t *valp;
    disk_key_t lat_key, sz_key;
    u64 delta;

    valp = start.lookup(&req);
    if (valp == 0) {
        return 0;   // missed issue
    }
    delta = (bpf_ktime_get_ns() - valp->ts) / 1000;

    __builtin_memset(&lat_key, 0, sizeof(lat_key));
    bpf_probe_read_kernel(&lat_key.disk, sizeof(lat_key.disk), req->__RQ_DISK__->disk_name);
    lat_key.slot = bpf_log2l(delta);

    __builtin_memset(&sz_key, 0, sizeof(sz_key));
    bpf_probe_read_kernel(&sz_key.disk, sizeof(sz_key.disk), req->__RQ_DISK__->disk_name);
    sz_key.slot = bpf_log2l(valp->bytes / 1024);

    if ((req->cmd_flags & REQ_OP_MASK) == REQ_OP_WRITE) {
        write_lat.atomic_increment(lat_key);
        write_req_sz.atomic_increment(sz_key);
    } else {
        read_lat.atomic_increment(lat_key);
        read_req_sz.atomic_increment(sz_key);
    }

    start.delete(&req);
    return 0;
}
"""

BPF_BODIES = {
    COMBINED.name: BPF_COMBINED,
    SPLIT.name: BPF_SPLIT,
}


class TracerError(Exception):
    """Raised when the BPF program cannot be loaded or attached"""
    pass


def bpf_text(schema: Schema, rq_disk: str = "rq_disk",
             max_entries: int = DEFAULT_MAX_ENTRIES) -> str:
    """
    Build the BPF program text for a schema.

    Args:
        schema: table layout the program must produce
        rq_disk: expression reaching the gendisk from a struct request;
            ``rq_disk`` before Linux 5.17, ``q->disk`` since
        max_entries: hash table capacity of each histogram
    """
    try:
        body = BPF_BODIES[schema.name]
    except KeyError:
        raise TracerError(f"No BPF program for schema '{schema.name}'") from None
    text = BPF_HEADER + body
    return (text
            .replace("__DISK_NAME_LEN__", str(DISK_NAME_LEN))
            .replace("__MAX_ENTRIES__", str(max_entries))
            .replace("__RQ_DISK__", rq_disk))


def _detect_rq_disk() -> str:
    if BPF.kernel_struct_has_field(b"request", b"rq_disk") == 1:
        return "rq_disk"
    return "q->disk"


class BioTracer:
    """Owns the loaded BPF program of a schema"""

    def __init__(self, schema: Schema, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.schema = schema
        self.max_entries = max_entries
        self.bpf: Optional[BPF] = None

    def __str__(self):
        return f"{self.__class__.__name__}(schema={self.schema.name}, max_entries={self.max_entries})"

    def program_text(self) -> str:
        """BPF program text for the running kernel"""
        return bpf_text(self.schema, rq_disk=_detect_rq_disk(), max_entries=self.max_entries)

    def load(self) -> None:
        if self.bpf is not None:
            return
        text = self.program_text()
        try:
            self.bpf = BPF(text=text)
        except Exception as e:
            raise TracerError(f"Failed to compile BPF program: {e}") from e
        logger.debug(f"{self} loaded.")

    def attach(self) -> None:
        """Attach the BPF functions to the first available kernel function of each candidate list"""
        self.load()
        for fn_name, candidates in KPROBES.items():
            event = next((c for c in candidates if BPF.get_kprobe_functions(c)), None)
            if event is None:
                raise TracerError(
                    f"None of the kernel functions {[c.decode() for c in candidates]} can be probed for {fn_name}"
                )
            try:
                self.bpf.attach_kprobe(event=event, fn_name=fn_name)
            except Exception as e:
                raise TracerError(f"Failed to attach {fn_name!r} to {event.decode()!r}: {e}") from e
            logger.info(f"Attached {fn_name} to {event.decode()}")

    def table_set(self) -> TableSet:
        """Table sources over the histograms of the loaded program"""
        if self.bpf is None:
            raise TracerError("BPF program is not loaded")
        sources = {layout.name: BccTableSource(self.bpf[layout.name]) for layout in self.schema.tables}
        return TableSet(self.schema, sources)

    def cleanup(self) -> None:
        if self.bpf is not None:
            self.bpf.cleanup()
            self.bpf = None
