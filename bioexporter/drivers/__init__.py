# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

"""
bioexporter drivers

Drivers expose the decoded block I/O histograms: the Prometheus driver serves
them at scrape time, the screen driver prints them every interval.
"""

from .base import DriverBase
from .prometheus_driver import PrometheusDriver
from .screen_driver import ScreenDriver

__all__ = ['DriverBase', 'PrometheusDriver', 'ScreenDriver']
