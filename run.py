#!/usr/bin/env python3
"""Run script for replan."""

import uvicorn

from replan.database.database import init_db

if __name__ == "__main__":
    init_db()
    uvicorn.run(
        "replan.api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
