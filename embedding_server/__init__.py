"""Embedding server: chunking, embedding storage and retrieval-augmented answers."""
