"""
stackup - ordered deployment of a containerized application stack.

Drives ``docker compose`` to bring up a database, reverse proxy, application
and monitoring units in dependency order, provisions the database
idempotently, and reports the outcome of every stage.
"""

__version__ = "0.1.0"
