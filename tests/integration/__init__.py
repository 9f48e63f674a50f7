"""Integration tests for the voters registry.

End-to-end checks of registration, submission, rankings and side-effect
dispatch against a running stack (API, dispatch worker, RabbitMQ,
PostgreSQL). Skipped unless API_BASE_URL is set.
"""
