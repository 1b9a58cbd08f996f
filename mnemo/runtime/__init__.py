"""
Runtime Module

WHAT: In-memory retention and relevance engine for agent-generated knowledge
WHERE: mnemo/runtime/ - library layer below API/CLI/storage hosts
WHO: Hosts scoring contexts, recording agent interactions and tracking agents
TIME: Every operation synchronous and bounded (history ≤100 interactions)

The engine performs no I/O and no locking. Hosts persist the serialized form
of each entity and serialize access to one entity per writer.
"""

__all__ = ["memory"]
