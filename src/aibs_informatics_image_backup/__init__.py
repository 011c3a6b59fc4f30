"""AIBS Informatics image backup.

Scheduled AWS Lambda handlers that back up machine images of Auto Scaling group
instances into a secondary region and expire old copies.
"""
