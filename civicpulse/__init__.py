"""
CivicPulse Civic Issue Reporting Backend

A REST backend where:
1. Citizens submit geo-tagged reports (photos, audio, description)
2. Reports are auto-prioritized by nearby density and category severity
3. Administrators triage, assign and resolve them
4. A social layer (votes, comments, views) surfaces popular issues

Read-heavy endpoints sit behind a keyed cache that every mutation
invalidates after commit.
"""

__version__ = "1.0.0"
