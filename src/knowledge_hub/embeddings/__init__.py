"""
Embeddings — provider registry, backends, batch scheduling, and the
request/response service built on top of them.
"""
