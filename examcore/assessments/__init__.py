"""
Assessment Architecture

Documents describe an assessment, sessions administer one attempt at it, and
the store keeps every live session reachable and durable.
"""
