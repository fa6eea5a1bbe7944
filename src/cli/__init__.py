"""
Command line interface for stack orchestration.
"""
