"""Core building blocks: results and errors, logging, configuration."""
