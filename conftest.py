"""
Pytest configuration for the remote builder tests.

The modules under src/ are installed as top-level modules, so put src/ on
sys.path to make them importable without an editable install.
"""

import os
import sys

SRC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)
