"""
Chat Memory

On-device storage for chat sessions with offline semantic recall, plus a
small terminal chat client that uses it.
"""

__version__ = "0.1.0"

__author__ = 'Chat Memory Team'

import os
from pathlib import Path

# Set up package-level constants
ROOT_DIR = Path(os.path.dirname(os.path.abspath(__file__)))
DATA_DIR = ROOT_DIR / "data"
