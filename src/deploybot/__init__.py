"""Deploybot - Webhook-driven deployment automation.

This package receives Git provider push webhooks, matches them against
per-repository branch configuration, runs a clone/build/deploy pipeline
against a local checkout and reports the outcome to Discord channels.
"""

__version__ = "0.1.0"
