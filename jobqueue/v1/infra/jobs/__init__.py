"""
Durable background job queue.

This package provides a store-backed job system with:
- Optimistic-concurrency claims, safe under overlapping passes
- Registry-based pluggable handlers
- Bounded retries with exponential backoff
- Stale job recovery and a retention sweep
"""
