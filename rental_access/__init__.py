"""Rental lifecycle and secure streaming access service."""
