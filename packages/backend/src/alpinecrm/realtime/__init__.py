"""Real-time event source — Redis pub/sub + WebSocket fan-out.

Learn: Events flow through two hops:
1. Mutation services → Redis PUBLISH (per-user or broadcast channel)
2. Redis SUBSCRIBE → WebSocket → client session (cache invalidation)

Producers never know which clients are connected; a client that is
offline simply misses the event and re-fetches on its next read.
"""
