"""CSV source loader - WKT column becomes a feature class, otherwise a table."""

from datasearches.sources.csv.loader import CSVLoader, LoadedDataset

__all__ = [
    "CSVLoader",
    "LoadedDataset",
]
