"""AlpineCRM — realtime sync layer for the small-business CRM.

Server-side mutations are announced as domain events, pushed over an
authenticated WebSocket to every connected session, and routed client-side
into query-cache invalidations and a bounded notification log.
"""

__version__ = "0.1.0"
