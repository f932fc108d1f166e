"""Tests for the multi-model workflow core."""
