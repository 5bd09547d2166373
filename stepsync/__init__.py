"""Step definition resolution for Gherkin feature files."""

__version__ = "0.1.0"
