"""
Shared pytest fixtures for bioexporter test suite.
"""

from __future__ import annotations

import sys
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

# Mock bcc module before importing bioexporter modules
# This allows testing pure Python functions without requiring eBPF/kernel access
_mock_bcc = MagicMock()
_mock_bcc.BPF = MagicMock()
_mock_bcc.__version__ = "0.0-test"
sys.modules["bcc"] = _mock_bcc

from bioexporter.keycodec import NO_OP_KEY_STRUCT, OP_KEY_STRUCT, VALUE_STRUCT  # noqa: E402


def op_key(device: str, op: int, slot: int) -> bytes:
    """Raw bytes of a key carrying an operation field."""
    return OP_KEY_STRUCT.pack(device.encode(), op, slot)


def no_op_key(device: str, slot: int) -> bytes:
    """Raw bytes of a key without operation field."""
    return NO_OP_KEY_STRUCT.pack(device.encode(), slot)


def value(count: int) -> bytes:
    """Raw bytes of a bucket count."""
    return VALUE_STRUCT.pack(count)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_yaml_config(temp_dir: Path) -> Path:
    """Create a sample YAML configuration file."""
    config_path = temp_dir / "config.yml"
    config_path.write_text(
        """
interval: 10
schema: split
max_entries: 4096
debug: true

prometheus:
  prom_exporter_host: 127.0.0.1
  prom_exporter_port: 9200

screen:
  histograms: true
"""
    )
    return config_path


@pytest.fixture
def text_entries() -> list:
    """Text entries of a combined latency table, in bcc key_sprintf format."""
    return [
        ('{ "sda" 0x1 0x5 }', "0x2"),
        ('{ "sda" 0x0 0x0 }', "0x1"),
        ('{ "sda" 0x1 0x3 }', "0x5"),
        ('{ "nvme0n1" 0x0 0xa }', "0x1f3"),
        ('{ "sdb" 0x63 0x2 }', "0x7"),
    ]


@pytest.fixture
def binary_entries() -> list:
    """Binary entries of a combined latency table."""
    return [
        (op_key("sda", 1, 5), value(2)),
        (op_key("sda", 0, 0), value(1)),
        (op_key("sda", 1, 3), value(5)),
        (op_key("nvme0n1", 0, 10), value(499)),
        (op_key("sdb", 99, 2), value(7)),
    ]
