"""Gatehouse — wire schemas for error records and route payloads."""
