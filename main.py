#!/usr/bin/env python3
"""
On-Demand Remote Docker Build

Builds a Docker image on a Compute Engine VM and pushes it to Artifact
Registry. The VM is started if it is stopped and stopped again afterwards;
a VM that was already running is left running.

This script supports running directly from a source checkout that uses a
src/ layout. It adds the local `src/` directory to sys.path before
importing. For production use, prefer installing the project and using the
`remote-docker-build` console script.
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main

if __name__ == "__main__":
    sys.exit(main())
