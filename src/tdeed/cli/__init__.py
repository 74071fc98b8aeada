"""
tdeed command line interface.
"""
