"""
Ingestion — text extraction, chunking, embedding and persistence.

This package turns uploaded bytes into embedded chunks stored in a vector
database while the lifecycle engine tracks each document's progress.
"""
