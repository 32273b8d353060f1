from setuptools import setup, find_packages
import os

PACKAGE = "bioexporter"
ROOT = os.path.dirname(__file__)
try:
    VERSION = open(os.path.join(ROOT, "version.txt")).read().strip()
except OSError:
    VERSION = "0.0+local.dummy"
assert VERSION, "Failed to determine version"

requires = [
    "PyYAML>=6.0",
    "stevedore>=3.5.0",
    "prometheus_client>=0.17.0",
    "pandas>=1.3.0",
]

# pip install .[test]
extras_require = {
    # BCC python bindings usually come with the distribution bpfcc packages
    "bpf": [
        "bcc>=0.25.0",
    ],
    "test": [
        "pytest>=6.2.4",
        "pytest-asyncio>=0.21.0",
    ]
}

setup(
    name=PACKAGE,
    author="bioexporter Development Team",
    author_email="bioexporter@example.com",
    version=VERSION,
    license="Apache License 2.0",
    description="Export Linux block I/O latency and request size histograms to Prometheus using eBPF",
    long_description="""
bioexporter traces block layer requests with eBPF and exposes per-device,
per-operation histograms of request latency and request size to Prometheus.

Key Features:
- eBPF-based tracing with minimal overhead
- log2 histograms kept in kernel tables, decoded on every scrape
- Prometheus histograms labelled by device and operation (read, write, flush, ...)
- Combined or split (read/write) BPF table layouts
- Multiple output drivers (Prometheus, console)
    """,
    long_description_content_type="text/plain",
    classifiers=[
        "Development Status :: 4 - Beta",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Monitoring",
        "Topic :: System :: Hardware",
    ],
    keywords="block io latency histogram monitoring ebpf bpf prometheus",
    provides=[PACKAGE],
    packages=find_packages(exclude=["tests"]),
    entry_points={
        "console_scripts": [
            "bioexporter = bioexporter.main:main",
        ],
        "bioexporter.drivers": [
            "screen = bioexporter.drivers:ScreenDriver",
            "prometheus = bioexporter.drivers:PrometheusDriver",
        ],
    },
    install_requires=requires,
    extras_require=extras_require,
    python_requires=">=3.9",
)
