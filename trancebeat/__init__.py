"""TranceBeat: guided affirmation sessions over a binaural beat."""

__version__ = "0.1.0"
