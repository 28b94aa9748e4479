"""Transactional outbox relay."""
