"""Image backup engine.

Resource gateway, state poller, per-group image pipeline, retention sweeper and the
orchestrator that ties them together.
"""
