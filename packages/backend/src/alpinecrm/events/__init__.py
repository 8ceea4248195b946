"""Domain events — the closed set of "<kind>:<action>" names the server emits."""
