"""Async registry operations: manifests, blobs and layer planning."""
