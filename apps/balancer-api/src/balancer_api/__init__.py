"""Balancer Studio HTTP API."""
