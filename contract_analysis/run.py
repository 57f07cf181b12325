#!/usr/bin/env python3
"""
Quick runner for Contract Analysis Service
==========================================

Usage:
    python -m contract_analysis.run
"""

import os

import uvicorn

if __name__ == "__main__":
    print("Starting Contract Analysis Service...")
    print("API docs: http://localhost:8000/docs")
    print()

    uvicorn.run(
        "contract_analysis.api:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        reload=os.environ.get("RELOAD", "false").lower() == "true"
    )
