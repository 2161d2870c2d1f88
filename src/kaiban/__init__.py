"""kaiban: Markdown task board whose work is carried out by AI CLIs."""

__version__ = "0.4.0"
