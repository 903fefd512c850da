# tests/conftest.py
# Puts the repository root on sys.path so "import spi_core" works without installing.
import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
