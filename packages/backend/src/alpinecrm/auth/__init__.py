"""Authentication for the realtime channel.

Learn: The socket is authenticated once, at connect time, with the same
bearer JWT the REST API issues. The token's subject is the user id that
selects the per-user event channel.
"""
