"""Background worker process and the actor protocol."""
