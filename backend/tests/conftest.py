"""
Pytest configuration for the canvas backend tests.
"""

import os

# api_app creates the shapes table on startup; keep it off disk.
os.environ.setdefault("CANVAS_DATABASE_URL", "sqlite://")
