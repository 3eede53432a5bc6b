"""Infrastructure: document store gateway and identity provider adapters."""
