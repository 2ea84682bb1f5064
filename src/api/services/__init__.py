"""Pipeline stages, adapters and orchestration."""
