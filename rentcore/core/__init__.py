"""Configuration, logging, errors and job schemas."""
