"""Mail-triggered task runner: intake, execution, reporting and delivery."""

__version__ = "0.3.0"
