"""Tests for osbuild-operator."""
