#!/usr/bin/env python3
"""
comfy-agent launcher

Runs the CLI from a source checkout without installing the package:

    python run.py run portrait --prompt "a lighthouse at dusk" --n 4 --seed 100 --seed-step 1
"""

import os
import sys

# Ensure we're using the checkout's package
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, BASE_DIR)

from comfy_agent.cli import main

if __name__ == "__main__":
    sys.exit(main())
