"""
Features package for the tutoring pipeline.

Sessions, learner memory, cost monitoring, fallback content, guardian
notifications and bulk content generation.
"""
