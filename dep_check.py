#!/usr/bin/env python3
"""
dep-check - find missing, outdated and vulnerable npm/yarn/pnpm dependencies.

Usage:
    dep_check.py                 # ask what to do
    dep_check.py scan --npm      # check for missing dependencies
    dep_check.py analyze         # outdated packages and vulnerabilities
    dep_check.py --fix           # wipe node_modules + lockfile and reinstall
"""

import os
import sys

# Run from a checkout without installing
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dep_audit.cli import run


if __name__ == "__main__":
    run()
