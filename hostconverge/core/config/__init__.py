"""Configuration and recipe loading."""
