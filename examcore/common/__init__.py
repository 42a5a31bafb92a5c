"""
Common utilities shared across the exam engine: logging, exceptions, and
structured error reporting.
"""
