"""
Postgres persistence for generated histories and clinical read models.
"""
