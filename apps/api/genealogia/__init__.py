"""Genealogia collaborative platform backend."""
