"""Helpers for highly available PostgreSQL clusters: Barman settings, backup scheduling, restore targeting, admin SQL, health checks and API responses."""

__version__ = "0.1.0"