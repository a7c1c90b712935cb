"""
Domain modules of the progression engine.

- progression: scoring, streaks and the character ledger
- habits / tasks: completion services
- challenges: participation, progress, verification and lifecycle
- leaderboard: challenge and global ranking
- maintenance: recurring jobs run by the worker
"""
