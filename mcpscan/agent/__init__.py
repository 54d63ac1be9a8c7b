"""
Scanner agent runtime: registration, heartbeat, polling, the push endpoint
and the clone -> scan -> submit pipeline.
"""
