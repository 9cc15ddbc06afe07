__version__ = "0.4.0"
__release_date__ = "2026-10-01"
__version_label__ = f"{__version__} ({__release_date__})"
