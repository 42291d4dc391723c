"""Data source loaders.

- csv: delimited text, with an optional WKT geometry column
"""
