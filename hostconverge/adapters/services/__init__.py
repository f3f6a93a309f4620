"""Service controllers (systemd, Windows SCM) and the service adapter."""
