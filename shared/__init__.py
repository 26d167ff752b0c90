"""Shared infrastructure and utilities for the order engine."""
