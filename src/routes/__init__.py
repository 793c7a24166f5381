"""
API Routes Package
==================
Shared helpers for the FastAPI app defined in api.py.

Modules:
  helpers  - DB utilities, JSON coercion, param clamping, payload builders
"""
