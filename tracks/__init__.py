"""Track generation pipeline.

Derives tracks from a user's raw GPS points, either in bulk (time-chunked,
fanned out over Celery workers and stitched back together by boundary
resolution) or incrementally as live points arrive.
"""
