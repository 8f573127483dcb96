"""BillSleuth - billing investigation agent with human-approved proposals."""

__version__ = "0.1.0"
