"""
Test Suite for Growth Tracker

This package contains all tests for the tracker components:
- state model and state engine
- milestone and manifestation adapters
- tracker service and HTTP API
"""
