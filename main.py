"""
Pickup Tracker - Main Entry Point
Runs the command line interface from a source checkout
"""

import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "src"))

from pickup_tracker.cli import main


if __name__ == "__main__":
    main()
