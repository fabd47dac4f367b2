"""
WEBCORE - HTTP API
"""
