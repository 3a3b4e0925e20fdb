#!/usr/bin/env python3
"""
Simple runner script for the moderation engine.

Usage:
    python run.py evaluate --actor alice --device dev-1 "hello there"
    python run.py high-risk --min-score 80

Or make executable:
    chmod +x run.py
    ./run.py evaluate - < messages.tsv
"""

import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from chatguard import main

if __name__ == "__main__":
    main()
