"""IPED worker: run one forensic indexing job at a time under a fleet-wide lock."""

__version__ = "0.4.0"
