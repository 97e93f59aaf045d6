"""
AccessMap - Serverless Entry Point
Exposes the FastAPI application for ASGI hosts.
"""

import os
import sys

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from accessmap.api.main import app

handler = app
