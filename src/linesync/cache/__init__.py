# src/linesync/cache/__init__.py
"""
Local durable record of which config lines the remote collection has acknowledged.
"""
