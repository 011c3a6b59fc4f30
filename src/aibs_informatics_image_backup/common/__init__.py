"""Common Lambda utilities and base classes.

Provides the base handler class, logging and metrics mixins, and a Lambda context for
running handlers locally.
"""
