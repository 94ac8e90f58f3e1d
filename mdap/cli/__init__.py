"""
Command line interface for MDAP.
"""
