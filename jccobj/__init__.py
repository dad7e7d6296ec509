"""MVS object deck tools: ESD/XSD name translation and a RENT-aware prelinker."""

__version__ = "1.0.0"

__all__ = ["ebcdic", "objscan", "symbols", "rent", "output", "prelink"]