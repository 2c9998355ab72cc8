"""
Infrastructure layer - persistence, resilience and monitoring.
"""
