"""Breakpad text-format symbol files: parsing records and evaluating their unwind rules."""

__version__ = "0.1.0"