"""
examcore: Timed Assessment Session Engine

This package administers one student's attempt at a timed, item-based
assessment: eligibility check, item navigation, submission, rule-driven
scoring, outcome recording, and a durable registry of live sessions that
survives process restarts.
"""

__version__ = "0.1.0"
