"""Patch toolkit for 3DS title code: files, exheader, symbols, hooks and insertion."""

__version__ = "0.1.0"