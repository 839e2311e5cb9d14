"""Reader for binary USD crate files and the crate layers in USDZ archives."""

__version__ = "0.1.4"