"""Hierarchy store implementations for the local mirror."""
