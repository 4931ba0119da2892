"""
Ingestion — document loading, chunking, hashing and embedding.

This package turns a pack of Markdown documents into hashed chunks with
vectors, ready to be published as a snapshot by :mod:`docpack.store`.
"""
