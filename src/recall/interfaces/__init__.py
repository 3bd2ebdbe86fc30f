"""Operator interfaces."""
