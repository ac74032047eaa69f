"""
Core infrastructure: run context, external commands, freshness checks, logging.
"""
