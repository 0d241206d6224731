#!/usr/bin/env python3
"""
Main launcher for VoxTerm.

Simple entry point that starts the voice terminal.
"""

from terminal import main
import asyncio
import sys


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
