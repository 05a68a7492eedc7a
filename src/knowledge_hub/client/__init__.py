"""Client-side helpers: the REST client, the WebSocket transport, and the session that owns the event channel."""
