"""ContractFlow: contract lifecycle engine (sign, pay, finalize)."""

__version__ = "1.0.0"
