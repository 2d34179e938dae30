#!/usr/bin/env python3
"""Chunk parsed legal documents and load them into the search indexes."""

from __future__ import annotations

import sys

from lexqa.ingest.cli import main

if __name__ == "__main__":
    sys.exit(main())
