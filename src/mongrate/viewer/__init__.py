"""HTTP API and live stream server for mongrate jobs."""
