"""Segment processing stages: fetch, normalize, batch, concat."""
