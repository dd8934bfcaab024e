"""dcaflow: server-side executor for recurring USDC DCA plans."""

__version__ = "0.1.0"
