"""Test support: in-memory fakes for the docker CLI and the database unit."""
