"""Browser control panel for networked AV receivers and IR transmitters."""

__version__ = "2.0.0"
