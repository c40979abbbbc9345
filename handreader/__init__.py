"""Hand Reader — identifies which deck cards occupy the on-screen hand slots."""

__version__ = "0.1.0"
