"""
Utilities: HTTP exceptions, validators, time helpers.
"""
