"""
shareflow command line interface.
"""
