#!/usr/bin/env python3
"""
run.py — Launch fern-obs without installing.

Usage (from the repository root):
    python run.py daemon
    python run.py daemon --host 192.168.1.100 --password secret
    python run.py status --json
    python run.py scene "Gaming"
"""
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent))

from fern_obs.main import app

if __name__ == "__main__":
    app()
