"""hostconverge — rule-driven convergence for monitoring agents."""

__version__ = "0.1.0"
