"""End-to-end scenario harness for the live-media streaming platform."""
