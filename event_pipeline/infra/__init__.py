"""Infrastructure adapters: database, outbox relay, broker, state store, logging, metrics."""
