"""
Real-time — the persistent event channel and the state kept in sync over it.

- :mod:`~knowledge_hub.realtime.events` — wire messages and scopes.
- :mod:`~knowledge_hub.realtime.channel` — client channel with reference-counted scopes.
- :mod:`~knowledge_hub.realtime.hub` — server-side rooms and fan-out.
- :mod:`~knowledge_hub.realtime.reconciliation` — optimistic upload reconciliation.
- :mod:`~knowledge_hub.realtime.presence` — typing indicators.
- :mod:`~knowledge_hub.realtime.timers` — cancellable timers.
"""
