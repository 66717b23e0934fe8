#!/usr/bin/env python3
"""
consteval/__main__.py
=====================

Entry point for ``python -m consteval`` and the ``consteval`` console script.

Usage
-----
    python -m consteval <command> [options] <ir-file>

Commands
--------
    check       Evaluate every #assert of a lowered module
    dump        Parse a module and pretty-print it
"""

import sys

from consteval.main import main

if __name__ == "__main__":
    sys.exit(main())
