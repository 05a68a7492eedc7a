"""
Serving — FastAPI application for documents, embeddings and search.

The WebSocket route at ``/ws`` feeds client connections into the
:class:`~knowledge_hub.realtime.hub.EventHub`.
"""
