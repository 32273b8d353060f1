# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

import signal
import asyncio
import argparse
from typing import List, Dict, Any, Tuple, Union


class InvalidArgument(Exception):
    """Exception raised for invalid arguments"""
    pass


def set_signal_handler(handler_func, loop):
    """Set up signal handlers for graceful shutdown"""
    for sig in [signal.SIGTERM, signal.SIGINT]:
        try:
            loop.add_signal_handler(sig, handler_func, sig, None)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, handler_func)


async def await_until_event_or_timeout(timeout: float, stop_event: asyncio.Event):
    """Wait for either timeout or stop event"""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        return True  # Event was set
    except asyncio.TimeoutError:
        return False  # Timeout occurred


def maybe_bool_parse(value: Union[str, bool]) -> bool:
    """Parse string or bool value to bool"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ('true', 'yes', '1', 'on')
    return bool(value)


def parse_args_options_from_namespace(namespace: Dict[str, Any], parser: argparse.ArgumentParser) -> argparse.Namespace:
    """Parse arguments from a namespace dictionary (e.g. a YAML config section)"""
    args = []
    for key, value in namespace.items():
        if value is None or isinstance(value, dict):
            # nested mappings are driver sections, handled by the drivers themselves
            continue
        if isinstance(value, bool):
            if value:
                args.append(f"--{key.replace('_', '-')}")
        elif isinstance(value, list):
            for item in value:
                args.extend([f"--{key.replace('_', '-')}", str(item)])
        else:
            args.extend([f"--{key.replace('_', '-')}", str(value)])

    return parser.parse_args(args)


def log2_bucket_range(index: int) -> Tuple[int, int]:
    """
    Value range covered by a log2 bucket, as printed by bcc's print_log2_hist.

    bcc prints bucket i as (2^i >> 1) -> 2^i - 1, widening bucket 1 to 0 -> 1.
    Bucket 0, which bcc does not print, only holds zero values.
    """
    if index <= 0:
        return 0, 0
    low, high = (1 << index) >> 1, (1 << index) - 1
    if low == high:
        low -= 1
    return low, high


def stars(value: int, max_value: int, width: int) -> str:
    """Render a bar of '*' proportional to value/max_value"""
    if max_value <= 0 or value <= 0:
        return ""
    filled = int(width * min(value, max_value) / max_value)
    bar = "*" * filled
    if value > max_value:
        bar = bar[:-1] + "+"
    return bar
