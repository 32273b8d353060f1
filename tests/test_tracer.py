"""
Tests for BPF program generation and attachment in bioexporter.tracer.

bcc is mocked in conftest; these tests only check how the tracer drives it.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from bioexporter.schema import COMBINED, SPLIT, Schema
from bioexporter.tables import TableSet
from bioexporter.tracer import KPROBES, BioTracer, TracerError, bpf_text


@pytest.fixture
def bpf_cls():
    with patch("bioexporter.tracer.BPF") as mock_bpf:
        mock_bpf.kernel_struct_has_field.return_value = 1
        mock_bpf.get_kprobe_functions.return_value = [b"probe"]
        yield mock_bpf


class TestBpfText:
    """Tests for bpf_text function."""

    def test_combined(self) -> None:
        """The combined program declares io_lat and io_req_sz with an op field."""
        text = bpf_text(COMBINED)

        assert "BPF_HISTOGRAM(io_lat, disk_key_t, 10240);" in text
        assert "BPF_HISTOGRAM(io_req_sz, disk_key_t, 10240);" in text
        assert "u8 op;" in text
        assert "char disk[32];" in text

    def test_split(self) -> None:
        """The split program declares read/write tables without op field."""
        text = bpf_text(SPLIT)

        for name in ("read_lat", "write_lat", "read_req_sz", "write_req_sz"):
            assert f"BPF_HISTOGRAM({name}," in text
        assert "u8 op;" not in text

    @pytest.mark.parametrize("schema", [COMBINED, SPLIT])
    def test_placeholders_replaced(self, schema: Schema) -> None:
        """No template placeholder survives."""
        text = bpf_text(schema, rq_disk="q->disk", max_entries=64)

        assert "__" + "MAX_ENTRIES" not in text
        assert "__" + "RQ_DISK" not in text
        assert "req->q->disk->disk_name" in text
        assert ", 64);" in text

    @pytest.mark.parametrize("schema", [COMBINED, SPLIT])
    def test_probe_functions_defined(self, schema: Schema) -> None:
        """Every kprobe handler is defined in the program."""
        text = bpf_text(schema)

        for fn_name in KPROBES:
            assert f"int {fn_name}(" in text

    def test_unknown_schema(self) -> None:
        """Schemas without a program raise TracerError."""
        with pytest.raises(TracerError):
            bpf_text(Schema("dense", COMBINED.tables))


class TestBioTracer:
    """Tests for BioTracer class."""

    def test_load_detects_rq_disk(self, bpf_cls: MagicMock) -> None:
        """Older kernels reach the disk through req->rq_disk."""
        BioTracer(COMBINED).load()

        assert "req->rq_disk->disk_name" in bpf_cls.call_args.kwargs["text"]

    def test_load_newer_kernel(self, bpf_cls: MagicMock) -> None:
        """Newer kernels reach the disk through the request queue."""
        bpf_cls.kernel_struct_has_field.return_value = 0
        BioTracer(COMBINED).load()

        assert "req->q->disk->disk_name" in bpf_cls.call_args.kwargs["text"]

    def test_load_once(self, bpf_cls: MagicMock) -> None:
        """Loading twice compiles the program once."""
        tracer = BioTracer(COMBINED)
        tracer.load()
        tracer.load()

        assert bpf_cls.call_count == 1

    def test_compile_failure(self, bpf_cls: MagicMock) -> None:
        """Compilation errors become TracerError."""
        bpf_cls.side_effect = Exception("boom")

        with pytest.raises(TracerError, match="boom"):
            BioTracer(COMBINED).load()

    def test_attach_first_available(self, bpf_cls: MagicMock) -> None:
        """The first probeable candidate of each handler is used."""
        bpf_cls.get_kprobe_functions.side_effect = lambda name: name.startswith(b"blk_")
        tracer = BioTracer(COMBINED)
        tracer.attach()

        tracer.bpf.attach_kprobe.assert_any_call(event=b"blk_account_io_start", fn_name="trace_req_start")
        tracer.bpf.attach_kprobe.assert_any_call(event=b"blk_account_io_done", fn_name="trace_req_completion")
        assert tracer.bpf.attach_kprobe.call_count == 2

    def test_attach_no_candidate(self, bpf_cls: MagicMock) -> None:
        """Missing kernel functions raise TracerError."""
        bpf_cls.get_kprobe_functions.return_value = []

        with pytest.raises(TracerError, match="trace_req_start"):
            BioTracer(COMBINED).attach()

    def test_attach_failure(self, bpf_cls: MagicMock) -> None:
        """attach_kprobe errors become TracerError."""
        bpf_cls.return_value.attach_kprobe.side_effect = Exception("denied")

        with pytest.raises(TracerError, match="denied"):
            BioTracer(COMBINED).attach()

    def test_table_set_requires_load(self) -> None:
        """Tables are only available once the program is loaded."""
        with pytest.raises(TracerError):
            BioTracer(COMBINED).table_set()

    def test_table_set(self, bpf_cls: MagicMock) -> None:
        """Every table of the schema is looked up in the program."""
        tracer = BioTracer(SPLIT)
        tracer.load()
        tables = tracer.table_set()

        assert isinstance(tables, TableSet)
        looked_up = [c.args[0] for c in bpf_cls.return_value.__getitem__.call_args_list]
        assert looked_up == ["read_lat", "write_lat", "read_req_sz", "write_req_sz"]

    def test_cleanup(self, bpf_cls: MagicMock) -> None:
        """Cleanup detaches the program and is idempotent."""
        tracer = BioTracer(COMBINED)
        tracer.load()
        bpf = tracer.bpf
        tracer.cleanup()
        tracer.cleanup()

        bpf.cleanup.assert_called_once()
        assert tracer.bpf is None
