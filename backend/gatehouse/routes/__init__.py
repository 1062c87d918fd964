"""
Gatehouse — API Routes Package
================================

Route Inventory:
    - health.py:       GET /health, GET /api/v1/health
    - root.py:         GET /api/v1/
    - diagnostics.py:  /api/v1/test-error/* (development and test only)
"""
