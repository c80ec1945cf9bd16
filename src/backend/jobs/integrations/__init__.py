"""Integration adapters for external systems (platform RPC, document saving).

Keep these modules small and testable:
- No FastAPI request/response objects
- No orchestration concerns
- Pure IO + payload shaping helpers
"""
