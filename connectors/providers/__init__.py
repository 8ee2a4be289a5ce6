"""
Provider connectors — one module per farm-data provider.
"""
