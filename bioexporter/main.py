# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025

import os
import sys
import logging
import argparse
import asyncio
from importlib import metadata

from bcc import __version__ as bcc_version
from stevedore.extension import Extension
from stevedore.named import NamedExtensionManager

from bioexporter import __version__ as bioexporter_version
from bioexporter.config import ConfigError, build_runtime_settings, load_config_file
from bioexporter.drivers import PrometheusDriver, ScreenDriver
from bioexporter.logger import COLORS, get_logger, set_log_level
from bioexporter.schema import SCHEMAS, get_schema
from bioexporter.tracer import BioTracer, TracerError
from bioexporter.utils import (
    InvalidArgument,
    set_signal_handler,
    await_until_event_or_timeout,
    parse_args_options_from_namespace,
)

logger = get_logger("main", COLORS.green_code)

ENTRYPOINT_GROUP = "bioexporter.drivers"

# Drivers shipped with the package, used when entry points are not installed
# (e.g. running from a source checkout)
BUILTIN_DRIVERS = {
    "prometheus": PrometheusDriver,
    "screen": ScreenDriver,
}


def _entry_point_drivers():
    entry_points = metadata.entry_points()
    if sys.version_info >= (3, 10):
        return {e.name: e for e in entry_points.select(group=ENTRYPOINT_GROUP)}
    return {e.name: e for e in entry_points.get(ENTRYPOINT_GROUP, [])}


ENTRYPOINTS = _entry_point_drivers()
available_drivers = sorted(set(ENTRYPOINTS) | set(BUILTIN_DRIVERS))


def driver_classes():
    """Driver name -> driver class for every available driver"""
    classes = dict(BUILTIN_DRIVERS)
    for name, entry_point in ENTRYPOINTS.items():
        if name not in classes:
            classes[name] = entry_point.load()
    return classes


class HelpFormatter(argparse.HelpFormatter):
    """Help formatter listing the options of every driver next to the common ones"""

    def format_help(self):
        sections = [("Configuration Options", conf_parser)]
        sections += [(f"{cls.__name__} Options", cls.parser) for cls in driver_classes().values()]

        help_text = []
        for section_name, parser in sections:
            help_text.append(f"\n{COLORS.intense_blue(section_name)}:")
            width = max(len(", ".join(action.option_strings)) for action in parser._actions)
            for action in parser._actions:
                options = ", ".join(action.option_strings)
                choices = f" {COLORS.yellow('[ choices')}: {', '.join(map(str, action.choices))} {COLORS.yellow(']')}" if action.choices else ""
                default = (
                    f" {COLORS.green('[ default')}: {action.default!r} {COLORS.green(']')}"
                    if action.default is not None and action.default != argparse.SUPPRESS else ""
                )
                help_text.append(f"  {options.ljust(width)}: {action.help}{choices}{default}")

        return f"Usage: {self._prog} [options]\n" + "\n".join(help_text) + "\n\n"


# Configuration parser
conf_parser = argparse.ArgumentParser(prog="bioexporter", formatter_class=HelpFormatter)
conf_parser.add_argument(
    '-d', '--driver',
    help="Driver to enable. User can specify multiple options.",
    choices=available_drivers, action='append', required=False, default=None
)
conf_parser.add_argument(
    "--debug", action="store_true",
    help="Enable debug prints."
)
conf_parser.add_argument(
    "-i", "--interval", default=None, type=float,
    help="Screen output interval, in seconds."
)
conf_parser.add_argument(
    "--schema", default=None, choices=sorted(SCHEMAS),
    help="BPF table layout: one latency and size table with the operation in the key (combined),"
         " or separate read/write tables (split)."
)
conf_parser.add_argument(
    "--max-entries", default=None, type=int,
    help="Capacity of each BPF histogram table."
)
conf_parser.add_argument(
    "--ebpf", action="store_true",
    help="Dump BPF program text and exit."
)
conf_parser.add_argument(
    "-C", "--cfg", default=None,
    help="Config yaml. When provided it takes precedence over command line arguments."
)


def validate_args(conf_args=None, argv=None):
    """
    Validate the arguments provided by the user.
    This function checks that all CLI options specified as command line arguments
    or in the configuration file are known to the configuration or a driver parser.
    """
    argv = sys.argv[1:] if argv is None else argv
    conf_keys = []
    if conf_args:
        conf_keys = [ck for ck in conf_args if ck not in available_drivers]
        for name in available_drivers:
            section = conf_args.get(name)
            if isinstance(section, dict):
                conf_keys += list(section)
    cli_keys = [ck for ck in argv if ck.startswith("-")]

    all_parsers = [conf_parser] + [cls.parser for cls in driver_classes().values()]
    all_options = set()
    for parser in all_parsers:
        for action in parser._actions:
            all_options.update(action.option_strings)
    available_keys = {k.replace("-", "_").strip("_") for k in all_options}

    for key in conf_keys + cli_keys:
        refined_key = key.lstrip("-").replace("-", "_").split("=")[0]
        if refined_key and refined_key not in available_keys:
            raise InvalidArgument(f"Unknown option '{key}'")


def load_drivers(names, args, tables):
    """Instantiate the named drivers through their entry points, or the builtin classes"""
    invoke_kwds = dict(common_args=args, tables=tables)
    if all(name in ENTRYPOINTS for name in names):
        return NamedExtensionManager(
            namespace=ENTRYPOINT_GROUP,
            invoke_on_load=True,
            names=names,
            invoke_kwds=invoke_kwds,
        )
    extensions = []
    for name in names:
        plugin = BUILTIN_DRIVERS[name]
        extensions.append(Extension(name, None, plugin, plugin(**invoke_kwds)))
    return NamedExtensionManager.make_test_instance(extensions, namespace=ENTRYPOINT_GROUP)


async def _exec():
    """Main execution function to set up the BPF program and run the drivers"""
    exit_error = None
    stop_event = asyncio.Event()
    args, remaining = conf_parser.parse_known_args()
    cfg_opts = None
    cfg_path = args.cfg

    if args.cfg:
        if not os.path.exists(args.cfg):
            raise FileNotFoundError(args.cfg)
        cfg_opts = load_config_file(args.cfg)
        if cfg_opts:
            args = parse_args_options_from_namespace(namespace=cfg_opts, parser=conf_parser)
            args.driver = sorted(set(available_drivers).intersection(set(cfg_opts.keys())))

    settings = build_runtime_settings(args, cfg_opts or {})
    args.interval = settings.interval
    schema = get_schema(settings.schema)

    tracer = BioTracer(schema, max_entries=settings.max_entries)

    if args.ebpf:
        print(tracer.program_text())
        return 0

    try:
        validate_args(cfg_opts)
    except InvalidArgument as e:
        conf_parser.error(str(e))

    drivers = args.driver
    if not drivers:
        conf_parser.error("No driver specified.")

    if settings.debug:
        set_log_level(logging.DEBUG)

    logger.info(f"bioexporter<{COLORS.intense_blue(bioexporter_version)}> initialization, bcc {bcc_version}")

    display_options = [
        ("drivers", drivers),
        ("interval", settings.interval),
        ("schema", schema.name),
        ("max-entries", settings.max_entries),
        ("config", cfg_path),
    ]
    logger.info(
        f"Configuration options: "
        f"{', '.join(f'{k}={v}' for k, v in display_options)}"
    )

    try:
        tracer.attach()
    except TracerError as e:
        logger.error(str(e))
        tracer.cleanup()
        return 1
    tables = tracer.table_set()

    mgr = load_drivers(drivers, args, tables)

    def on_exit(sig=None, frame=None):
        """Teardown drivers gracefully on exit"""
        logger.info("Exiting...")
        stop_event.set()

    set_signal_handler(on_exit, asyncio.get_running_loop())

    # Setup drivers
    if cfg_opts:
        setup_coros = mgr.map(lambda e: e.obj.setup(namespace=cfg_opts.get(e.name) or {}))
    else:
        setup_coros = mgr.map_method("setup", remaining)

    try:
        await asyncio.gather(*setup_coros)
    except InvalidArgument as e:
        exit_error = e
        conf_parser.print_help()
        on_exit()
    except Exception as e:
        exit_error = e
        on_exit()

    if not stop_event.is_set():
        logger.info("All good! bioexporter is tracing block I/O.")

    # Drivers publishing on their own schedule (e.g. on scrape) get no interval snapshots
    consumers = [e.obj for e in mgr if e.obj.wants_snapshots]
    loop = asyncio.get_running_loop()

    # Main collection loop
    while not stop_event.is_set():
        canceled = await await_until_event_or_timeout(timeout=settings.interval, stop_event=stop_event)
        if canceled:
            break
        if not consumers:
            continue

        # Reading BPF tables blocks on bpf syscalls
        snapshot = await loop.run_in_executor(None, tables.snapshot)
        await asyncio.gather(*(driver.store_sample(snapshot) for driver in consumers))

    # Cleanup
    await asyncio.gather(*mgr.map_method("teardown"))
    tracer.cleanup()

    if exit_error:
        logger.error(str(exit_error))
        return 1
    return 0


def main():
    """Main entry point"""
    try:
        return asyncio.run(_exec())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except (ConfigError, InvalidArgument, FileNotFoundError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
