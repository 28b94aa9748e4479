"""Core building blocks: settings, exceptions, events and persistence base."""
