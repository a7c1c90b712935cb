"""Questline: progression and challenge-state engine for a gamified productivity tracker."""

__version__ = "1.0.0"
