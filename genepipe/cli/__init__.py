"""
Command-line interface for the genepipe pipeline.
"""
