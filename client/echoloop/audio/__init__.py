"""Audio capture and endpointing."""
