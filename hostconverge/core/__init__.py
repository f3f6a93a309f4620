"""Core — models, engine, config, persistence, use cases."""
