"""
Contract Analysis Service
=========================

Contract ingestion and AI analysis pipeline:
1. Admission control per caller and endpoint category
2. Upload validation (size ceiling, byte-level type sniffing) and durable storage
3. Background AI analysis with validation of the model output

Authentication, tenant resolution and persistence are reached through
narrow adapters (auth.py, repository.py, storage.py).
"""

__version__ = "1.0.0"
