"""Echoloop capture client."""
