"""Tests for contactcore."""
