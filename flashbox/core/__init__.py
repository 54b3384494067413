"""Domain logic that performs no I/O: scheduling, session machine, outbox."""
