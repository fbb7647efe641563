"""Classifier, session state machine, pattern analysis, configuration."""
