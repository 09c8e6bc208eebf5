"""
Domain layer - persistent entities.
"""
