"""Use-case level logic.

These modules implement the completion-workflow business rules (cost
aggregation, evidence gates) on data already held in a completion session.

They should be:
- deterministic
- unit-testable
- free of web/framework code and network calls
"""
