"""Test doubles used across the suite."""
