"""Tests for the osbuild-operator command line tool."""
