"""
Upstream access and record standardization
"""
