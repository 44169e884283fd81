"""
HTTP surface and object storage helpers for medhistory.
"""
