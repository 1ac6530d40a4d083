"""Cyber Genesis stage service."""
