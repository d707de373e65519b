#!/usr/bin/env python3
"""
FFI Binding Generator

Reads a JSON interface model and generates:
  1. C header for the native core's exports
  2. Python ctypes bindings
  3. Kotlin JNA bindings

Usage:
    python generate_bindings.py model.json --output-dir generated/
    python generate_bindings.py model.json --backend kotlin --kotlin-package com.example
"""

import sys
from pathlib import Path

# Add parent directory to path so ffigen package can be found
sys.path.insert(0, str(Path(__file__).parent.parent))

from ffigen.cli import main

if __name__ == "__main__":
    sys.exit(main())
