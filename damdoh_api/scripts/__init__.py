"""
Operational scripts.
"""
