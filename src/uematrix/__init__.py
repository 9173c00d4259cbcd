"""Multi-platform Unreal Engine plugin build matrix."""

__version__ = "0.1.0"
