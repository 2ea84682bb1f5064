"""Echoloop voice API."""
