#!/usr/bin/env python3
"""
WordPress bootstrap tasks.

Usage:
    tasks.py install [CONSTRAINT]         # Download WordPress core (default: latest)
    tasks.py update [CONSTRAINT]          # Update core, keeping site content
    tasks.py update --dry-run v4.9.*      # Show what an update would remove
    tasks.py generate-salts               # Write .salts.php
    tasks.py fix-permissions              # Make wp-content/uploads writable
"""

import os
import sys

# Add current directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from wp_tasks.cli import run

if __name__ == "__main__":
    run()
