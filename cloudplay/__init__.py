"""CloudPlay - cloud game streaming client."""

__app_name__ = "CloudPlay"
__version__ = "0.3.0"
