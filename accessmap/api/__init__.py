"""
AccessMap - Ingestion API
HTTP boundary over the report lifecycle engine.
"""
