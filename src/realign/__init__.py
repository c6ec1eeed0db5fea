"""ReAlign intelligence core: model orchestration, pattern recognition and continuous learning."""

__version__ = "0.1.0"
