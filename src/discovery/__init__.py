"""Job discovery: scans CI pipelines for gate usage and reports them."""

__version__ = "1.0.0"
