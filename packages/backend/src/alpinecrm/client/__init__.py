"""Client-side sync layer.

Learn: One RealtimeClient per logged-in user wires together:
1. Transport/Session — the reconnecting, authenticated WebSocket
2. EventRouter — maps each domain event to cache invalidations
3. QueryCache — query results keyed by (kind, params), marked stale on events
4. NotificationStore — bounded, newest-first notification log

Invalidation, not patching: a stale entry is re-fetched from the
DataProvider on its next read.
"""
