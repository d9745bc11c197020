"""quizguard: resilient, validated quiz generation over external AI backends."""

__version__ = "0.1.0"
