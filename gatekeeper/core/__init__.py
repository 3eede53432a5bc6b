"""Core: config, constants, rate-limit policies, cookie envelope, policy gate
and application bootstrap.

Single place for settings and shared constants.
"""
