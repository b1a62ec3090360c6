"""crewpay - time-to-pay pipeline for construction crews."""

__version__ = "0.1.0"
