"""
Configuration, logging and the exception hierarchy
"""
