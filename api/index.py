"""
Serverless entry point for the Ara Voice API.

Wraps the FastAPI application with Mangum. The lifespan is run on the
first invocation so the session store and gateways exist for every
request the warm function serves.
"""

import os
import sys
from pathlib import Path

# Project root holds the top-level modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

os.environ.setdefault("DEBUG", "False")

from mangum import Mangum

from app import app as application

# Sessions live as long as the warm function instance
handler = Mangum(application, lifespan="auto")

__all__ = ["handler", "application"]
