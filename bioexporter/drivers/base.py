# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

import abc
import argparse

from bioexporter.logger import get_logger, COLORS
from bioexporter.tables import Snapshot, TableSet
from bioexporter.utils import InvalidArgument, parse_args_options_from_namespace


class DriverBase(abc.ABC):
    """
    Base class for bioexporter output drivers.

    A driver receives the TableSet of the running tracer at construction time.
    Drivers that publish on their own schedule (e.g. on scrape) read it
    directly; the others consume the snapshot handed to ``store_sample``
    every interval.
    """

    # Driver options; "--foo-bar" is "foo_bar" in the driver's config section
    parser: argparse.ArgumentParser = NotImplemented

    # Whether store_sample is fed a snapshot every interval
    wants_snapshots = True

    def __init__(self, common_args: argparse.Namespace, tables: TableSet):
        self.name = self.__class__.__name__.lower().replace("driver", "")
        self.common_args = common_args
        self.tables = tables
        self.logger = get_logger(self.name, COLORS.blue)

    def __str__(self):
        raise NotImplementedError()

    __repr__ = __str__

    @abc.abstractmethod
    async def store_sample(self, snapshot: Snapshot):
        """Export the histograms decoded during one collection pass"""
        pass

    def _options_from_section(self, section) -> argparse.Namespace:
        if not isinstance(section, dict):
            raise InvalidArgument(
                f"Config section '{self.name}' must be a mapping, got {section!r}."
                f" Check available arguments for {self.__class__.__name__} driver."
            )
        return parse_args_options_from_namespace(namespace=section, parser=self.parser)

    def _options_from_cli(self, argv) -> argparse.Namespace:
        try:
            options, _ = self.parser.parse_known_args(argv)
        except SystemExit as e:
            raise InvalidArgument(f"Invalid {self.name} driver options: {' '.join(argv)}") from e
        return options

    async def setup(self, args=(), namespace=None) -> argparse.Namespace:
        """
        Parse the driver options.

        ``namespace`` is the driver's section of the YAML config; when given
        (even empty) it replaces the command line ``args``.
        """
        self.logger.info(f"Setting up {self.name} driver.")
        if namespace is not None:
            return self._options_from_section(namespace)
        return self._options_from_cli(list(args))

    async def teardown(self):
        """Release driver resources"""
        pass
