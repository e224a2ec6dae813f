"""HTTP middleware and exception handling for the phase_forge API."""
