"""Stateless request authorization core: rate limiting, single-use token
validation, server-side sessions and the policy gate in front of every
privileged endpoint."""
