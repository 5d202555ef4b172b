#!/usr/bin/env python
"""
Wrapper script to run the Equipment Tracker Manager.
"""

import sys
from equipment_tracker.manager import main

if __name__ == "__main__":
    sys.exit(main())
