"""
Questline core infrastructure: configuration, logging, persistence,
events, time and scheduling. Contains no progression rules.
"""
